"""
codegate - Sandboxed code-execution gateway for model-authored scripts.
"""
__version__ = "0.1.0"


def __getattr__(name):
    if name == "CodeGateway":
        from codegate.gateway import CodeGateway
        return CodeGateway
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["CodeGateway", "__version__"]
