"""
Training Script
===============

Command-line script to train churn prediction models.

Usage:
    python scripts/train.py --config config/config.yaml
    python scripts/train.py --sample 5000
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from churn_pipeline.cli import main


if __name__ == "__main__":
    sys.exit(main())
