"""Services used by the controllers: registry client, resource store, observability."""
