from .gate import TokenGate
from .meter import TokenMeter, TokenStatus

__all__ = ["TokenGate", "TokenMeter", "TokenStatus"]
