from portalsim.models.claim import Claim, ClaimLineItem  # noqa: F401
from portalsim.models.appeal import ClaimAppeal  # noqa: F401
from portalsim.models.learning_event import LearningEvent  # noqa: F401
from portalsim.models.pattern_snapshot import PatternSnapshot  # noqa: F401
from portalsim.models.scenario_run import ScenarioRun  # noqa: F401
