"""
codegate API module.
"""

def __getattr__(name):
    if name == "create_app":
        from codegate.api.server import create_app
        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = ["create_app"]
