"""
Screening flow: test profiles, the single-test controller and the suite orchestrator.
"""

from .profiles import (
    TestProfile, balance_profile, gait_profile, stillness_profile, direction_profile,
    posture_profile, posture_tiers, default_suite,
)
from .results import DataSource, SuiteStatus, TestResult, OrchestrationState
from .controller import SingleTestController, TestState
from .orchestrator import ScreeningOrchestrator

__all__ = [
    'TestProfile', 'balance_profile', 'gait_profile', 'stillness_profile', 'direction_profile',
    'posture_profile', 'posture_tiers', 'default_suite',
    'DataSource', 'SuiteStatus', 'TestResult', 'OrchestrationState',
    'SingleTestController', 'TestState', 'ScreeningOrchestrator',
]
