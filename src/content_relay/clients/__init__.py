from content_relay.clients.content_lookup import ContentLookupClient

__all__ = ["ContentLookupClient"]
