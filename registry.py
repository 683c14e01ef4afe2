"""
Submission Registry
In-memory store for code submissions and their evaluations
"""

import logging
import threading
import zlib
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Base class for registry errors"""


class ValidationError(RegistryError, ValueError):
    """Missing or empty submission id / code"""


class SubmissionNotFoundError(RegistryError, KeyError):
    pass


class EvaluationNotFoundError(RegistryError, KeyError):
    pass


class SubmissionConflictError(RegistryError):
    """An analysis is already in flight for this submission id"""


class InvalidTransitionError(RegistryError):
    pass


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed forward transitions within one submission record
TRANSITIONS = {
    SubmissionStatus.PENDING: {SubmissionStatus.ANALYZING, SubmissionStatus.FAILED},
    SubmissionStatus.ANALYZING: {SubmissionStatus.COMPLETED, SubmissionStatus.FAILED},
    SubmissionStatus.COMPLETED: set(),
    SubmissionStatus.FAILED: set(),
}

IN_FLIGHT = {SubmissionStatus.PENDING, SubmissionStatus.ANALYZING}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Submission:
    """
    A code artifact registered under a submission id
    """
    id: str
    code_hash: str
    received_at: datetime = field(default_factory=utcnow)
    status: SubmissionStatus = SubmissionStatus.PENDING
    error: Optional[str] = None

    def __repr__(self):
        return f"<Submission(id={self.id}, status={self.status.value}, hash={self.code_hash[:12]})>"

    def to_dict(self):
        """Convert to dictionary for JSON response"""
        out = {
            "submissionId": self.id,
            "codeHash": self.code_hash,
            "receivedAt": self.received_at.isoformat(),
            "status": self.status.value,
        }
        if self.error:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class Evaluation:
    """
    Immutable scoring result for a completed submission
    """
    submission_id: str
    code_hash: str
    complexity: int
    security: int
    quality: int
    final_score: int
    lines_of_code: int
    functions: int
    events: int
    modifiers: int
    completed_at: datetime = field(default_factory=utcnow)
    scoring_version: Dict[str, str] = field(default_factory=dict)

    def __repr__(self):
        return f"<Evaluation(id={self.submission_id}, score={self.final_score})>"

    def to_results(self):
        """Score block returned by POST /analyze"""
        return {
            "complexity": self.complexity,
            "security": self.security,
            "quality": self.quality,
            "finalScore": self.final_score,
            "analysis": {
                "linesOfCode": self.lines_of_code,
                "functions": self.functions,
                "events": self.events,
                "modifiers": self.modifiers,
            },
        }

    def to_dict(self):
        """Convert to dictionary for JSON response"""
        return {
            "submissionId": self.submission_id,
            "codeHash": self.code_hash,
            **self.to_results(),
            "completedAt": self.completed_at.isoformat(),
            "scoringVersion": dict(self.scoring_version),
            "status": SubmissionStatus.COMPLETED.value,
        }


@dataclass(frozen=True)
class RegistryStats:
    total: int
    completed: int
    failed: int

    @property
    def pending(self) -> int:
        return self.total - self.completed

    def to_dict(self):
        return {
            "totalSubmissions": self.total,
            "completedAnalyses": self.completed,
            "pendingAnalyses": self.pending,
            "failedAnalyses": self.failed,
        }


class _Shard:
    __slots__ = ("lock", "submissions", "evaluations")

    def __init__(self):
        self.lock = threading.Lock()
        self.submissions: Dict[str, Submission] = {}
        self.evaluations: Dict[str, Evaluation] = {}


class SubmissionRegistry:
    """
    Owns every Submission and Evaluation for the lifetime of the process.

    Records are spread over lock stripes keyed by submission id, so writers
    to different ids never contend. Resubmitting a finished id replaces the
    old submission and evaluation in full; resubmitting an id that is still
    pending or analyzing raises SubmissionConflictError.
    """

    def __init__(self, shard_count: int = 16):
        if shard_count < 1:
            raise ValueError("shard_count must be >= 1")
        self._shards = [_Shard() for _ in range(shard_count)]
        # Always taken after a shard lock, never before one
        self._hash_lock = threading.Lock()
        self._by_hash: Dict[str, Evaluation] = {}

    def _shard(self, submission_id: str) -> _Shard:
        index = zlib.crc32(submission_id.encode("utf-8")) % len(self._shards)
        return self._shards[index]

    # ----- writes -----

    def begin(self, submission_id: str, code_hash: str) -> Submission:
        """Register a fresh pending submission, replacing any finished one."""
        if not submission_id:
            raise ValidationError("submissionId is required")
        if not code_hash:
            raise ValidationError("code is required")

        shard = self._shard(submission_id)
        with shard.lock:
            previous = shard.submissions.get(submission_id)
            if previous is not None and previous.status in IN_FLIGHT:
                raise SubmissionConflictError(
                    f"Submission {submission_id} is already {previous.status.value}"
                )
            submission = Submission(id=submission_id, code_hash=code_hash)
            shard.evaluations.pop(submission_id, None)
            shard.submissions[submission_id] = submission

        if previous is not None:
            logger.info("Replacing %s submission %s", previous.status.value, submission_id)
        return submission

    def _transition(self, shard: _Shard, submission_id: str, status: SubmissionStatus, **changes) -> Submission:
        current = shard.submissions.get(submission_id)
        if current is None:
            raise SubmissionNotFoundError(submission_id)
        if status not in TRANSITIONS[current.status]:
            raise InvalidTransitionError(
                f"{submission_id}: {current.status.value} -> {status.value}"
            )
        updated = replace(current, status=status, **changes)
        shard.submissions[submission_id] = updated
        return updated

    def mark_analyzing(self, submission_id: str) -> Submission:
        shard = self._shard(submission_id)
        with shard.lock:
            return self._transition(shard, submission_id, SubmissionStatus.ANALYZING)

    def complete(self, submission_id: str, evaluation: Evaluation) -> Submission:
        """Store the evaluation and mark the submission completed in one step."""
        if evaluation.submission_id != submission_id:
            raise InvalidTransitionError(
                f"evaluation for {evaluation.submission_id} stored under {submission_id}"
            )
        shard = self._shard(submission_id)
        with shard.lock:
            current = shard.submissions.get(submission_id)
            if current is None:
                raise SubmissionNotFoundError(submission_id)
            if current.code_hash != evaluation.code_hash:
                raise InvalidTransitionError(
                    f"{submission_id}: evaluation hash does not match submission hash"
                )
            updated = self._transition(shard, submission_id, SubmissionStatus.COMPLETED)
            shard.evaluations[submission_id] = evaluation
            with self._hash_lock:
                self._by_hash[evaluation.code_hash] = evaluation
            return updated

    def fail(self, submission_id: str, reason: str) -> Submission:
        shard = self._shard(submission_id)
        with shard.lock:
            return self._transition(shard, submission_id, SubmissionStatus.FAILED, error=reason)

    # ----- reads -----

    def get(self, submission_id: str) -> Submission:
        shard = self._shard(submission_id)
        with shard.lock:
            submission = shard.submissions.get(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)
        return submission

    def get_evaluation(self, submission_id: str) -> Evaluation:
        shard = self._shard(submission_id)
        with shard.lock:
            evaluation = shard.evaluations.get(submission_id)
        if evaluation is None:
            raise EvaluationNotFoundError(submission_id)
        return evaluation

    def find_by_hash(self, code_hash: str) -> Optional[Evaluation]:
        """Latest completed evaluation for byte-identical code, if any."""
        with self._hash_lock:
            return self._by_hash.get(code_hash)

    def stats(self) -> RegistryStats:
        total = completed = failed = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.submissions)
                completed += len(shard.evaluations)
                failed += sum(
                    1 for s in shard.submissions.values() if s.status is SubmissionStatus.FAILED
                )
        return RegistryStats(total=total, completed=completed, failed=failed)

