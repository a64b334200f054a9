from envvault_hub.api.routes import register_hub_routes

__all__ = ["register_hub_routes"]
