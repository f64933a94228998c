"""Per-stage checkpoints so a pipeline run can be audited and resumed."""

import json
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from .models import DocumentAnalysis

logger = structlog.get_logger(__name__)


class StageCheckpointStore:
    """
    One directory per analysis, one JSON file per completed stage.

    Files are named `<seq>_<stage>.json` so lexical order is execution order.
    """

    def __init__(self, storage_dir: str = "./checkpoints"):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _run_dir(self, analysis_id: str) -> Path:
        return self.storage_dir / analysis_id

    def save_stage(
        self,
        analysis: DocumentAnalysis,
        stage: str,
        execution_time_ms: float,
        metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Persist the full record as it stands after `stage`.

        Returns:
            Checkpoint file path, or "" if it could not be written
        """
        run_dir = self._run_dir(analysis.id)
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
            seq = len(list(run_dir.glob("*.json"))) + 1
            checkpoint_file = run_dir / f"{seq:02d}_{stage}.json"

            with open(checkpoint_file, "w") as f:
                json.dump({
                    "analysis_id": analysis.id,
                    "stage": stage,
                    "sequence": seq,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "execution_time_ms": execution_time_ms,
                    "metadata": metadata or {},
                    "analysis": analysis.to_dict(),
                }, f, indent=2)
        except OSError as e:
            logger.error("checkpoint_save_failed", analysis_id=analysis.id, stage=stage, error=str(e))
            return ""

        logger.info(
            "stage_checkpoint_saved",
            analysis_id=analysis.id,
            stage=stage,
            sequence=seq,
            execution_time_ms=execution_time_ms
        )
        return str(checkpoint_file)

    def list_stages(self, analysis_id: str) -> List[Dict[str, Any]]:
        """Checkpoint summaries for one analysis in execution order."""
        stages = []
        for checkpoint_file in sorted(self._run_dir(analysis_id).glob("*.json")):
            try:
                with open(checkpoint_file, "r") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("checkpoint_unreadable", file=str(checkpoint_file), error=str(e))
                continue
            stages.append({
                "stage": data.get("stage"),
                "sequence": data.get("sequence"),
                "timestamp": data.get("timestamp"),
                "execution_time_ms": data.get("execution_time_ms"),
                "file": str(checkpoint_file),
            })
        return stages

    def load_latest(self, analysis_id: str) -> Optional[DocumentAnalysis]:
        """
        Load the record from the most recent readable checkpoint.

        Returns:
            DocumentAnalysis or None if the run has no checkpoints
        """
        for checkpoint_file in sorted(self._run_dir(analysis_id).glob("*.json"), reverse=True):
            try:
                with open(checkpoint_file, "r") as f:
                    data = json.load(f)
                return DocumentAnalysis.model_validate(data["analysis"])
            except (OSError, ValueError, KeyError, ValidationError) as e:
                logger.warning("checkpoint_unreadable", file=str(checkpoint_file), error=str(e))
                continue

        logger.warning("checkpoint_not_found", analysis_id=analysis_id)
        return None

    def list_runs(self, limit: int = 50) -> List[Dict[str, Any]]:
        """
        List checkpointed runs, newest first.

        Args:
            limit: Maximum number of runs to return
        """
        runs = []
        for run_dir in self.storage_dir.iterdir():
            if not run_dir.is_dir():
                continue
            stages = self.list_stages(run_dir.name)
            if not stages:
                continue
            latest = self.load_latest(run_dir.name)
            runs.append({
                "analysis_id": run_dir.name,
                "filename": latest.filename if latest else None,
                "status": latest.status.value if latest else None,
                "last_stage": stages[-1]["stage"],
                "stage_count": len(stages),
                "timestamp": stages[-1]["timestamp"],
            })

        runs.sort(key=lambda x: x.get("timestamp") or "", reverse=True)
        return runs[:limit]

    def cleanup_old_runs(self, days_to_keep: int = 30) -> int:
        """
        Remove runs whose newest checkpoint is older than `days_to_keep` days.

        Returns:
            Number of runs removed
        """
        cutoff_time = datetime.now(timezone.utc).timestamp() - (days_to_keep * 24 * 60 * 60)
        cleaned_count = 0

        for run_dir in self.storage_dir.iterdir():
            if not run_dir.is_dir():
                continue
            mtimes = [p.stat().st_mtime for p in run_dir.glob("*.json")]
            if mtimes and max(mtimes) >= cutoff_time:
                continue
            try:
                shutil.rmtree(run_dir)
                cleaned_count += 1
            except OSError as e:
                logger.warning("checkpoint_cleanup_failed", run=str(run_dir), error=str(e))

        logger.info("checkpoints_cleaned", runs_removed=cleaned_count, days_to_keep=days_to_keep)
        return cleaned_count
