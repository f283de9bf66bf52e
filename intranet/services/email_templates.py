"""
Jinja2 templates for leave emails.
"""
from typing import Any, Dict, Tuple

from jinja2 import DictLoader, Environment, select_autoescape

_BASE = """<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; color: #222;">
  {% block body %}{% endblock %}
  <p style="color: #888; font-size: 12px;">This is an automated message from {{ app_name }}.</p>
</body>
</html>"""

_DETAILS = """<table cellpadding="4" style="border-collapse: collapse;">
  <tr><td><b>Employee</b></td><td>{{ employee_name }} ({{ employee_emp_id }})</td></tr>
  <tr><td><b>Leave type</b></td><td>{{ leave_type_label }}</td></tr>
  <tr><td><b>From</b></td><td>{{ start_date }} ({{ start_type }})</td></tr>
  <tr><td><b>To</b></td><td>{{ end_date }} ({{ end_type }})</td></tr>
  <tr><td><b>Days</b></td><td>{{ no_of_days }}</td></tr>
  {% if permission_window %}<tr><td><b>Timing</b></td><td>{{ permission_window }}</td></tr>{% endif %}
  <tr><td><b>Reason</b></td><td>{{ reason }}</td></tr>
</table>"""

_APPLICATION_HTML = """{% extends "base.html" %}
{% block body %}
  {% if urgent %}<p style="color: #c62828;"><b>URGENT:</b> this leave starts today.</p>{% endif %}
  <p>Hello {{ recipient_name }},</p>
  <p>{{ employee_name }} has applied for {{ leave_type_label | lower }} and it is awaiting your review.</p>
  {% include "details.html" %}
  <p><a href="{{ portal_url }}/leave/requests/{{ request_id }}">Review the request</a></p>
{% endblock %}"""

_APPLICATION_TEXT = """{% if urgent %}URGENT: this leave starts today.

{% endif %}Hello {{ recipient_name }},

{{ employee_name }} ({{ employee_emp_id }}) has applied for {{ leave_type_label | lower }}.
From: {{ start_date }} ({{ start_type }})
To: {{ end_date }} ({{ end_type }})
Days: {{ no_of_days }}
Reason: {{ reason }}

Review: {{ portal_url }}/leave/requests/{{ request_id }}
"""

_STATUS_HTML = """{% extends "base.html" %}
{% block body %}
  <p>Hello {{ employee_name }},</p>
  <p>Your {{ leave_type_label | lower }} request is now <b>{{ status_label }}</b>
  {% if approver_name %}by {{ approver_name }} ({{ approver_role }}){% endif %}.</p>
  {% include "details.html" %}
  {% if approved_days or rejected_days %}
  <p>Approved days: {{ approved_days }} &middot; Rejected days: {{ rejected_days }}</p>
  {% endif %}
  {% if rejection_reason %}<p><b>Reason for rejection:</b> {{ rejection_reason }}</p>
  {% elif comment %}<p><b>Comment:</b> {{ comment }}</p>{% endif %}
{% endblock %}"""

_STATUS_TEXT = """Hello {{ employee_name }},

Your {{ leave_type_label | lower }} request ({{ start_date }} to {{ end_date }}, {{ no_of_days }} day(s)) is now {{ status_label }}{% if approver_name %} by {{ approver_name }} ({{ approver_role }}){% endif %}.
{% if rejection_reason %}
Reason for rejection: {{ rejection_reason }}
{% elif comment %}
Comment: {{ comment }}
{% endif %}"""

TEMPLATES = {
    "base.html": _BASE,
    "details.html": _DETAILS,
    "leave_application.html": _APPLICATION_HTML,
    "leave_application.txt": _APPLICATION_TEXT,
    "leave_status.html": _STATUS_HTML,
    "leave_status.txt": _STATUS_TEXT,
}

env = Environment(
    loader=DictLoader(TEMPLATES),
    autoescape=select_autoescape(["html", "xml"]),
)

LEAVE_TYPE_LABELS = {
    "casual": "Casual Leave",
    "sick": "Sick Leave",
    "lop": "Loss of Pay Leave",
    "permission": "Permission",
}

STATUS_LABELS = {
    "approved": "Approved",
    "partially_approved": "Partially Approved",
    "rejected": "Rejected",
    "pending": "Pending",
}


def render_application_email(context: Dict[str, Any]) -> Tuple[str, str, str]:
    """Returns (subject, html, text)."""
    label = LEAVE_TYPE_LABELS.get(context["leave_type"], context["leave_type"])
    ctx = {**context, "leave_type_label": label}
    prefix = "URGENT: " if ctx.get("urgent") else ""
    subject = f"{prefix}{label} application from {ctx['employee_name']} ({ctx['employee_emp_id']})"
    return (
        subject,
        env.get_template("leave_application.html").render(**ctx),
        env.get_template("leave_application.txt").render(**ctx),
    )


def render_status_email(context: Dict[str, Any]) -> Tuple[str, str, str]:
    """Returns (subject, html, text)."""
    label = LEAVE_TYPE_LABELS.get(context["leave_type"], context["leave_type"])
    status_label = STATUS_LABELS.get(context["status"], context["status"])
    ctx = {**context, "leave_type_label": label, "status_label": status_label}
    subject = f"Your {label} request has been {status_label}"
    return (
        subject,
        env.get_template("leave_status.html").render(**ctx),
        env.get_template("leave_status.txt").render(**ctx),
    )
