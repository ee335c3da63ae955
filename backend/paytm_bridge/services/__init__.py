"""Business services: signing, order ids, lifecycle, gateway, reconciliation."""
