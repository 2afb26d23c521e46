"""Uploads analyzer output files and records them as analysis artifacts."""

import asyncio
import json
import logging
import os
import uuid
from dataclasses import dataclass

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from codegate.config import get_settings
from codegate.models.analysis import AnalysisArtifact
from codegate.models.enums import ArtifactKind
from codegate.schemas.report import AnalyzerReport
from codegate.services.storage_service import ObjectStorage

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class ArtifactFiles:
    log_path: str
    report_path: str | None = None
    measures_path: str | None = None


def artifact_key(analysis_id, analyzer_key: str, filename: str) -> str:
    return f"artifacts/{analysis_id}/{analyzer_key}/{filename}"


def write_report(out_dir: str, report: AnalyzerReport) -> str:
    path = os.path.join(out_dir, "report.json")
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(report.to_json())
    return path


def write_measures(out_dir: str, metrics: dict[str, float]) -> str:
    path = os.path.join(out_dir, "measures.json")
    with open(path, "w", encoding="utf-8") as handle:
        json.dump({"metrics": metrics}, handle, indent=2)
    return path


class ArtifactService:
    """Writes REPORT, MEASURES and LOG artifacts for one analyzer run."""

    def __init__(self, db: AsyncSession, storage: ObjectStorage | None = None):
        self.db = db
        self.storage = storage or ObjectStorage()

    async def upload_artifacts(
        self, analysis_id: uuid.UUID, analyzer_key: str, files: ArtifactFiles
    ) -> int:
        """Upload whatever files exist. Returns the number uploaded."""
        artifacts = [
            (ArtifactKind.REPORT, files.report_path, "application/json"),
            (ArtifactKind.MEASURES, files.measures_path, "application/json"),
            (ArtifactKind.LOG, files.log_path, "text/plain"),
        ]
        uploaded = 0
        for kind, path, content_type in artifacts:
            if not path:
                continue
            if not os.path.isfile(path):
                logger.warning(
                    "Analysis %s: %s artifact %s not found for %s, skipping",
                    analysis_id,
                    kind.value,
                    path,
                    analyzer_key,
                )
                continue

            data = await asyncio.to_thread(self._read, path)
            key = artifact_key(analysis_id, analyzer_key, os.path.basename(path))
            stored = await self.storage.put_object(
                settings.minio_bucket_artifacts, key, data, content_type
            )
            await self._upsert(analysis_id, analyzer_key, kind, stored.bucket, stored.key, content_type, len(data))
            uploaded += 1
        return uploaded

    def _read(self, path: str) -> bytes:
        with open(path, "rb") as handle:
            return handle.read()

    async def _upsert(
        self,
        analysis_id: uuid.UUID,
        analyzer_key: str,
        kind: ArtifactKind,
        bucket: str,
        object_key: str,
        content_type: str,
        size: int,
    ) -> None:
        stmt = insert(AnalysisArtifact).values(
            id=uuid.uuid4(),
            analysis_id=analysis_id,
            analyzer_key=analyzer_key,
            kind=kind.value,
            bucket=bucket,
            object_key=object_key,
            content_type=content_type,
            size=size,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_analysis_artifacts_key_kind",
            set_={
                "bucket": stmt.excluded.bucket,
                "object_key": stmt.excluded.object_key,
                "content_type": stmt.excluded.content_type,
                "size": stmt.excluded.size,
            },
        )
        await self.db.execute(stmt)
        await self.db.commit()
