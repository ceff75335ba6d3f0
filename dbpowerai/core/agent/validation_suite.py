# dbpowerai/core/agent/validation_suite.py

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .analysis_graph import AnalysisOrchestrator
from dbpowerai.core.sql.analysis_result import AnalysisResult, VALIDATOR_VALID

logger = logging.getLogger(__name__)

STATUS_PASSED = "passed"
STATUS_FAILED = "failed"


@dataclass
class SuiteTestCase:
    query: str
    schema: Optional[str] = None
    explain: Optional[str] = None
    test_type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SuiteTestCase":
        return cls(
            query=data["query"],
            schema=data.get("schema"),
            explain=data.get("explain"),
            test_type=data.get("test_type"),
        )


@dataclass
class SuiteTestResult:
    status: str
    query: str
    attempts: int
    validator_status: Optional[str]
    semantic_warning: Optional[str]
    rewritten_query: Optional[str]
    test_type: Optional[str] = None
    id: Optional[int] = None


@dataclass
class SuiteReport:
    total: int = 0
    passed: int = 0
    failed: int = 0
    tests: List[SuiteTestResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def run_validation_suite(orchestrator: AnalysisOrchestrator,
                         tests: List[Any],
                         store: Optional[Any] = None) -> SuiteReport:
    """
    Run each test case through the validated workflow, one after another.

    A case passes when the validator accepted a rewrite. Each run is recorded
    in the ``ai_tests`` table when a store is given; a storage error is logged
    and the run still counts.
    """
    report = SuiteReport(total=len(tests))
    logger.info(f"Running {len(tests)} validation tests")

    for raw_case in tests:
        case = raw_case if isinstance(raw_case, SuiteTestCase) else SuiteTestCase.from_dict(raw_case)
        logger.info(f"Processing test: {case.query[:50]}...")

        final_state = orchestrator.run(case.query, schema=case.schema, explain=case.explain)
        result = AnalysisResult(**final_state["result"])
        attempts = final_state.get("generator_calls", 0)

        passed = result.validator_status == VALIDATOR_VALID and result.rewritten_query is not None
        status = STATUS_PASSED if passed else STATUS_FAILED
        if passed:
            report.passed += 1
        else:
            report.failed += 1

        test_id = None
        if store is not None:
            try:
                test_id = store.record_test_run(
                    test_type=case.test_type or "manual",
                    input_query=case.query,
                    result=result.to_dict(),
                    status=status,
                    attempts=attempts,
                    schema=case.schema,
                    explain=case.explain,
                )
            except Exception:
                logger.exception("Failed to record test run")

        report.tests.append(SuiteTestResult(
            id=test_id,
            status=status,
            query=case.query,
            test_type=case.test_type,
            attempts=attempts,
            validator_status=result.validator_status,
            semantic_warning=result.semantic_warning,
            rewritten_query=result.rewritten_query,
        ))

    logger.info(f"Validation suite completed: {report.passed} passed, {report.failed} failed")
    return report
