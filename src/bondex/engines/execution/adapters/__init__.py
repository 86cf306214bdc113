from .pumpportal_adapter import PumpPortalSwapBuilder

__all__ = ["PumpPortalSwapBuilder"]
