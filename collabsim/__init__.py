# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# collabsim — deterministic test harness for replicated, RPC-connected editors
# MIT License

__version__ = "0.1.0"

from . import network
from . import rpc
from . import testing
