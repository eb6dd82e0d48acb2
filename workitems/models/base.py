"""
TenantModel — Abstract base class for tenant-scoped models.

Every tenant-owned table inherits the indexed ``tenant_id`` column from
here. Scoped lookups go through ``services/helpers/scoped_queries.py``.

Tenants live in the identity provider, not in this store, so tenant_id
carries no foreign key.
"""

from workitems.models import db


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(db.String(36), nullable=False, index=True)
