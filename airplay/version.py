#!/usr/bin/env python3
"""version information"""

__VERSION__ = "0.1.0"
