"""pyavctl Python Package

Python library for controlling Pioneer AV receivers over their line protocol
(TCP or RS-232) and projectors over PJLink.
"""

from pyavctl.pjlink import PJLinkDevice
from pyavctl.receiver import AvrReceiver

__all__ = ["AvrReceiver", "PJLinkDevice"]
