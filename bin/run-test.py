#!/usr/bin/env python3
"""Run a survey API load test from a source checkout.

Usage:
    ./run-test.py --config configs/test_profiles/survey_journey.yaml
    ./run-test.py --config configs/test_profiles/survey_participant.yaml --survey-id 42
"""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from engine.cli import main  # noqa: E402

if __name__ == '__main__':
    main()
