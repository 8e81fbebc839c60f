"""
Optional PyQt6 control panel.  Install with ``pip install focusgate[gui]``.
"""

from .control_panel import ControlPanel, QtLogHandler

__all__ = ["ControlPanel", "QtLogHandler"]
