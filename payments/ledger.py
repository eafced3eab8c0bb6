"""Append/upsert log of gateway transactions, keyed by ``provider_reference``.

Status only moves pending -> paid or pending -> failed. Once a row is
terminal, later upserts cannot change its status; a late ``pending`` write
(for example a delayed duplicate initialization) is ignored outright.
A ``superseded`` row keeps that status against ``pending`` writes but can
still be settled as paid or failed.
"""

import logging

from django.db import DatabaseError, IntegrityError, transaction

from orders.exceptions import PersistenceError

from .models import PaymentTransaction

logger = logging.getLogger(__name__)

_FIELDS = {f.name for f in PaymentTransaction._meta.get_fields() if getattr(f, "concrete", False)} - {"id", "provider_reference", "created_at"}


def upsert_transaction(reference: str, **fields):
    """Insert or update the ledger row for ``reference``.

    Returns ``(transaction, changed)``; ``changed`` is False when the write
    was ignored because the row is already terminal.
    """
    if not reference:
        raise PersistenceError("provider_reference is required")
    unknown = set(fields) - _FIELDS
    if unknown:
        raise TypeError(f"Unknown PaymentTransaction fields: {', '.join(sorted(unknown))}")

    try:
        with transaction.atomic():
            try:
                with transaction.atomic():
                    tx = PaymentTransaction.objects.create(provider_reference=reference, **fields)
                    return tx, True
            except IntegrityError:
                pass

            tx = PaymentTransaction.objects.select_for_update().get(provider_reference=reference)
            new_status = fields.get("status")
            if tx.status == PaymentTransaction.STATUS_SUPERSEDED and new_status == PaymentTransaction.STATUS_PENDING:
                fields = {k: v for k, v in fields.items() if k != "status"}
            if tx.is_terminal:
                if new_status == PaymentTransaction.STATUS_PENDING:
                    logger.warning("Ignoring pending upsert for settled transaction %s (%s)", reference, tx.status)
                    return tx, False
                if new_status and new_status != tx.status:
                    logger.warning(
                        "Transaction %s is already %s; not changing it to %s", reference, tx.status, new_status
                    )
                    return tx, False
            for name, value in fields.items():
                setattr(tx, name, value)
            tx.save()
            return tx, True
    except DatabaseError as e:
        raise PersistenceError(f"Could not write payment transaction {reference}: {e}") from e
