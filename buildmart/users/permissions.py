from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from buildmart.users.models import Permission

PERMISSION_CATALOG: list[tuple[str, str]] = [
    ("read:users", "User Management"),
    ("manage:users", "User Management"),
    ("read:roles", "Role Management"),
    ("manage:roles", "Role Management"),
    ("create:lead", "Lead Management"),
    ("read:all_leads", "Lead Management"),
    ("update:all_leads", "Lead Management"),
    ("delete:all_leads", "Lead Management"),
    ("assign:leads", "Lead Management"),
    ("create:inquiry", "Inquiry Management"),
    ("read:all_inquiries", "Inquiry Management"),
    ("update:all_inquiries", "Inquiry Management"),
    ("delete:all_inquiries", "Inquiry Management"),
    ("assign:inquiries", "Inquiry Management"),
    ("quote:inquiry", "Inquiry Management"),
    ("read:clients", "Client Management"),
    ("manage:clients", "Client Management"),
    ("read:companies", "Company Management"),
    ("manage:companies", "Company Management"),
    ("read:products", "Product Management"),
    ("manage:products", "Product Management"),
    ("upload:document", "Document Management"),
    ("read:documents", "Document Management"),
    ("manage:documents", "Document Management"),
    ("create:quotation", "Quotation Management"),
    ("read:all_quotations", "Quotation Management"),
    ("update:all_quotations", "Quotation Management"),
    ("delete:all_quotations", "Quotation Management"),
    ("approve:quotation", "Quotation Management"),
    ("send:quotation", "Quotation Management"),
    ("convert:quotation_to_order", "Quotation Management"),
    ("read:sales_orders", "Sales Order Management"),
    ("manage:sales_orders", "Sales Order Management"),
    ("log:attendance", "Attendance Management"),
    ("read:own_attendance", "Attendance Management"),
    ("read:all_attendance", "Attendance Management"),
    ("manage:attendance", "Attendance Management"),
    ("manage:dtr_settings", "Attendance Management"),
    ("manage:allowed_ips", "Attendance Management"),
    ("read:dashboard", "Reporting"),
    ("read:marketing", "Marketing"),
    ("manage:marketing", "Marketing"),
    ("read:metrics", "System Settings"),
    ("manage:system_settings", "System Settings"),
]


def seed_permissions(session: Session) -> int:
    """Insert any catalogue permission missing from the database. Returns the number added."""
    existing = set(session.scalars(select(Permission.name)).all())
    added = 0
    for name, module in PERMISSION_CATALOG:
        if name in existing:
            continue
        session.add(Permission(name=name, module=module))
        added += 1
    session.flush()
    return added
