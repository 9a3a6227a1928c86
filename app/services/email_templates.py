"""
HTML bodies and subjects for every email the fleet sends.

All interpolated values are escaped. Dates are rendered DD/MM/YYYY.
"""

from datetime import date
from html import escape
from typing import Optional, Sequence

from services.notifications import EmailMessage

_COLORS = {
    "info": "#3b82f6",
    "warning": "#f59e0b",
    "urgent": "#ea580c",
    "critical": "#dc2626",
    "blocked": "#7f1d1d",
    "success": "#16a34a",
}

_LAYOUT = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>{title}</title></head>
<body style="font-family: 'Segoe UI', Tahoma, sans-serif; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; background-color: #f5f5f5;">
  <div style="background-color: white; border-radius: 10px; overflow: hidden;">
    <div style="background-color: {color}; color: white; padding: 24px 20px; text-align: center;">
      <div style="font-size: 13px; font-weight: bold; letter-spacing: 1px;">{badge}</div>
      <div style="font-size: 22px;">{title}</div>
    </div>
    <div style="padding: 24px 20px;">
{content}
    </div>
    <div style="padding: 12px 20px; font-size: 12px; color: #888; text-align: center;">
      Automatic message from the fleet reservation system. Please do not reply.
    </div>
  </div>
</body>
</html>
"""


def format_date(value: Optional[date]) -> str:
    return value.strftime("%d/%m/%Y") if value else "-"


def overdue_urgency(days_overdue: int) -> str:
    """warning below 3 days, urgent from 3 to 6, critical from 7."""
    if days_overdue >= 7:
        return "critical"
    if days_overdue >= 3:
        return "urgent"
    return "warning"


def _render(title: str, badge: str, level: str, rows: Sequence[tuple], paragraphs: Sequence[str] = (), link: Optional[str] = None) -> str:
    parts = [f"      <p>{p}</p>" for p in paragraphs]
    if rows:
        parts.append('      <table style="width: 100%; border-collapse: collapse;">')
        for label, value in rows:
            parts.append(
                f'        <tr><td style="padding: 4px 0; color: #666;">{escape(str(label))}</td>'
                f'<td style="padding: 4px 0; font-weight: bold;">{escape(str(value))}</td></tr>'
            )
        parts.append("      </table>")
    if link:
        parts.append(
            f'      <p style="text-align: center;"><a href="{escape(link, quote=True)}" '
            f'style="background-color: {_COLORS[level]}; color: white; padding: 10px 18px; '
            f'border-radius: 6px; text-decoration: none;">Open the fleet system</a></p>'
        )
    return _LAYOUT.format(
        title=escape(title),
        badge=escape(badge),
        color=_COLORS[level],
        content="\n".join(parts),
    )


def reservation_confirmation(
    recipient: str,
    driver_name: str,
    plate: str,
    vehicle_label: str,
    pickup_date: date,
    return_date: date,
    destinations: Sequence[str],
    reservation_id: int,
    system_url: Optional[str] = None,
) -> EmailMessage:
    body = _render(
        title="Reservation confirmed",
        badge="CONFIRMED",
        level="success",
        paragraphs=[f"Hello {escape(driver_name)}, your vehicle reservation is confirmed."],
        rows=[
            ("Reservation", f"#{reservation_id}"),
            ("Vehicle", f"{vehicle_label} ({plate})".strip()),
            ("Pickup", format_date(pickup_date)),
            ("Return", format_date(return_date)),
            ("Destinations", ", ".join(destinations)),
        ],
        link=system_url,
    )
    return EmailMessage(
        recipient=recipient,
        subject=f"Reservation #{reservation_id} confirmed: {plate} {format_date(pickup_date)}",
        html_body=body,
        kind="confirmation",
    )


def overdue_trip_reminder(
    recipient: str,
    driver_name: str,
    plate: str,
    reservation_id: int,
    return_date: date,
    days_overdue: int,
    reminder_count: int = 1,
    pending_mileage: bool = False,
    system_url: Optional[str] = None,
) -> EmailMessage:
    """
    Reminder for a trip past its return date without a final odometer.
    `pending_mileage` switches the wording for trips the automation pass
    already completed.
    """
    level = overdue_urgency(days_overdue)
    ordinal = f" (reminder #{reminder_count})" if reminder_count > 1 else ""
    badge = f"{level.upper()}{ordinal}"

    if pending_mileage:
        title = "Final mileage pending"
        lead = (
            f"Hello {escape(driver_name)}, trip #{reservation_id} was closed automatically "
            f"but its final odometer reading was never reported."
        )
    else:
        title = "Trip not finalized"
        lead = (
            f"Hello {escape(driver_name)}, trip #{reservation_id} is {days_overdue} day(s) "
            f"past its return date and has not been finalized."
        )

    paragraphs = [lead, "Please enter the final odometer reading in the fleet system."]
    if level == "critical":
        paragraphs.append("This trip has been overdue for a week or more and has been reported to fleet management.")

    body = _render(
        title=title,
        badge=badge,
        level=level,
        paragraphs=paragraphs,
        rows=[
            ("Reservation", f"#{reservation_id}"),
            ("Vehicle", plate),
            ("Return date", format_date(return_date)),
            ("Days overdue", days_overdue),
        ],
        link=system_url,
    )
    return EmailMessage(
        recipient=recipient,
        subject=f"[{level.upper()}] {title}: {plate} ({days_overdue} day(s) overdue)",
        html_body=body,
        kind="pending_mileage" if pending_mileage else "overdue_reminder",
    )


def revision_alert(
    recipient: str,
    plate: str,
    vehicle_label: str,
    current_odometer: int,
    next_revision_odometer: int,
    km_until_revision: int,
    margin_remaining_km: int,
    status: str,
    system_url: Optional[str] = None,
) -> EmailMessage:
    """Admin alert for a vehicle whose revision is approaching, due or overdue."""
    level = {
        "approaching": "info",
        "urgent": "warning",
        "overdue_within_margin": "critical",
        "overdue_blocked": "blocked",
    }.get(status, "info")

    if status == "overdue_blocked":
        lead = "The vehicle is past its revision and the safety margin. It is blocked for new reservations."
    elif status == "overdue_within_margin":
        lead = f"The revision is overdue. {margin_remaining_km} km of safety margin remain before the vehicle is blocked."
    else:
        lead = f"The next revision is due in {km_until_revision} km."

    body = _render(
        title="Revision alert",
        badge=status.replace("_", " ").upper(),
        level=level,
        paragraphs=[lead],
        rows=[
            ("Vehicle", f"{vehicle_label} ({plate})".strip()),
            ("Current odometer", f"{current_odometer} km"),
            ("Revision due at", f"{next_revision_odometer} km"),
            ("Km until revision", f"{km_until_revision} km"),
        ],
        link=system_url,
    )
    return EmailMessage(
        recipient=recipient,
        subject=f"Revision alert: {plate} ({status.replace('_', ' ')})",
        html_body=body,
        kind="revision_alert",
    )
