"""LECRM renewal and notification reconciliation engine."""
