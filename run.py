#!/usr/bin/env python3
"""
RFP Mart Analyzer - Startup Script
"""

import sys

from rfpmart_analyzer.cli import main

if __name__ == "__main__":
    sys.exit(main())
