from content_relay.projection.projector import ContentViewProjector, EventProjector

__all__ = ["ContentViewProjector", "EventProjector"]
