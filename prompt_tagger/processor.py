"""
Main processor for the Prompt Tagger service.
"""

import time
from pathlib import Path
from typing import Callable, List, Optional
from .config import Settings
from .extraction import Extractor, MetadataExtractor
from .file_utils import relative_photo_path, resolve_local_file, wait_for_stable
from .labels import derive_labels
from .logging import MetricsLogger, ellipsize, get_logger
from .metadata_parser import parse_text_map
from .models import CanonicalMetadata, Photo, PhotoProcessingResult
from .performance_monitor import performance_monitor
from .photoprism_client import PhotoPrismAPIError, PhotoPrismClient


class ProcessorError(Exception):
    """Custom exception for processor errors."""
    pass


class UnsupportedFileError(ValueError):
    """Raised when a single-run target is not a supported image type."""
    pass


async def describe_file(file_path, extractor: Extractor) -> Optional[CanonicalMetadata]:
    """Parse the embedded metadata of a local file without touching the index."""
    text_map = await extractor(Path(file_path))
    if not text_map:
        return None
    return parse_text_map(text_map)


class PromptTagger:
    """Labels PhotoPrism photos from the prompt text embedded in their files."""

    def __init__(self, client: PhotoPrismClient, settings: Settings, extractor: Optional[Extractor] = None):
        self.logger = get_logger("processor")
        self.metrics = MetricsLogger()
        self.client = client
        self.settings = settings
        self.extractor = extractor or MetadataExtractor(settings.exiftool_path, settings.exiftool_timeout)

        # Progress tracking
        self.total_processed_items = 0
        self.total_assigned_labels = 0

    async def process_candidate(self, photo: Photo) -> PhotoProcessingResult:
        """Process a photo returned by the 'no caption yet' query."""
        return await self._label_photo(
            item_id=photo.UID,
            uid=photo.UID,
            locate=lambda: resolve_local_file(self.settings.originals_path, photo.folder, photo.file_name),
            display_name=photo.relative_path,
            check_stability=True,
        )

    async def process_file(self, file_path) -> PhotoProcessingResult:
        """Process a local file (watch, bootstrap and single-run modes)."""
        path = Path(file_path)
        start_time = time.time()
        self.logger.info(f"📸 Processing file: {path}")

        if not await self._wait_for_stable(path):
            return self._skipped(str(path), None, "file disappeared", start_time)

        filename, folder = relative_photo_path(self.settings.originals_path, path)
        self.logger.debug(f"Resolving photo UID | file: {folder}/{filename}")
        uid = await self.client.wait_for_photo_uid(
            filename,
            folder,
            attempts=self.settings.uid_lookup_attempts,
            interval=self.settings.uid_lookup_interval,
        )
        if not uid:
            self.logger.warning(f"⚠️  Photo UID not found | file: {folder}/{filename}")
            return self._skipped(str(path), None, "photo UID not found", start_time)

        return await self._label_photo(
            item_id=str(path),
            uid=uid,
            locate=lambda: path,
            display_name=str(path),
            check_stability=False,
            start_time=start_time,
        )

    async def describe_file(self, file_path) -> Optional[CanonicalMetadata]:
        return await describe_file(file_path, self.extractor)

    async def _wait_for_stable(self, path: Path) -> bool:
        return await wait_for_stable(
            path,
            timeout=self.settings.stability_timeout,
            poll_interval=self.settings.stability_poll_interval,
        )

    def _skipped(self, item_id: str, uid: Optional[str], reason: str, start_time: float) -> PhotoProcessingResult:
        self.metrics.log_item_skipped(item_id, reason)
        return PhotoProcessingResult(
            item_id=item_id,
            uid=uid,
            success=True,
            skipped=True,
            reason=reason,
            processing_time=time.time() - start_time,
        )

    def _failed(self, item_id: str, uid: Optional[str], error: str, start_time: float) -> PhotoProcessingResult:
        self.metrics.log_item_failure(item_id, error)
        return PhotoProcessingResult(
            item_id=item_id,
            uid=uid,
            success=False,
            error=error,
            processing_time=time.time() - start_time,
        )

    async def _label_photo(
        self,
        item_id: str,
        uid: str,
        locate: Callable[[], Optional[Path]],
        display_name: str,
        check_stability: bool,
        start_time: Optional[float] = None,
    ) -> PhotoProcessingResult:
        """Shared body: marker check, file lookup, extraction, parsing, label writes."""
        start_time = start_time or time.time()

        # Check if the photo already has the marker label (skip if already done)
        try:
            if await self.client.has_label(uid, self.settings.marker_label):
                self.logger.info(f"⏭️  Skipping already processed photo | uid: {uid} | file: {display_name}")
                return self._skipped(item_id, uid, "already processed", start_time)
        except PhotoPrismAPIError as e:
            return self._failed(item_id, uid, f"marker check failed: {e}", start_time)

        file_path = locate()
        if file_path is None:
            self.logger.warning(f"⚠️  File not found locally | uid: {uid} | file: {display_name}")
            return self._skipped(item_id, uid, "file not found", start_time)

        if check_stability and not await self._wait_for_stable(file_path):
            self.logger.info(f"File disappeared before processing | uid: {uid} | file: {file_path}")
            return self._skipped(item_id, uid, "file disappeared", start_time)

        text_map = await self.extractor(file_path)
        if not text_map:
            self.logger.warning(f"⚠️  No prompt found | uid: {uid} | file: {file_path}")
            return self._skipped(item_id, uid, "no metadata", start_time)

        metadata = parse_text_map(text_map)
        if metadata is None:
            self.logger.warning(f"⚠️  No positive prompt in metadata | uid: {uid} | file: {file_path}")
            return self._skipped(item_id, uid, "no positive prompt", start_time)

        self.logger.debug(f"🧠 Positive preview: {ellipsize(metadata.positive)}")
        if metadata.negative:
            self.logger.debug(f"🙅 Negative preview: {ellipsize(metadata.negative)}")

        labels = derive_labels(
            metadata,
            stopwords=self.settings.stopwords,
            limit=self.settings.label_limit,
            include_model=self.settings.include_model_label,
        )
        if not labels:
            self.logger.warning(f"⚠️  No labels parsed from prompt | uid: {uid} | file: {file_path}")
            return self._skipped(item_id, uid, "no labels", start_time)

        if self.settings.update_caption:
            try:
                await self.client.update_photo(uid, metadata.source_text(), metadata.positive)
            except PhotoPrismAPIError as e:
                self.logger.warning(f"⚠️  Caption update failed | uid: {uid} | error: {e}")

        assigned = await self._apply_labels(uid, labels)

        try:
            await self.client.add_label(uid, self.settings.marker_label, priority=self.settings.marker_priority)
        except PhotoPrismAPIError as e:
            self.logger.warning(f"⚠️  Marker label not written | uid: {uid} | error: {e}")
            return self._failed(item_id, uid, f"marker label not written: {e}", start_time)

        processing_time = time.time() - start_time
        self.total_processed_items += 1
        self.total_assigned_labels += len(assigned)
        self.metrics.log_item_processed(item_id, len(assigned), processing_time)
        performance_monitor.record_item_processed(processing_time)

        self.logger.info(
            f"✅ Photo labeled | uid: {uid} | file: {display_name} | "
            f"labels: {len(assigned)}/{len(labels)} | time: {processing_time:.2f}s"
        )
        return PhotoProcessingResult(
            item_id=item_id,
            uid=uid,
            success=True,
            labels_assigned=assigned,
            processing_time=processing_time,
        )

    async def _apply_labels(self, uid: str, labels: List[str]) -> List[str]:
        """Write labels one by one; a failed label does not stop the rest."""
        assigned = []
        for label in labels:
            try:
                await self.client.add_label(uid, label)
                assigned.append(label)
            except PhotoPrismAPIError as e:
                self.logger.warning(f"⚠️  Label write failed | uid: {uid} | label: {label} | error: {e}")
        return assigned

    def get_progress_status(self) -> dict:
        """Get processing progress information."""
        return {
            "total_processed": self.total_processed_items,
            "total_labels_assigned": self.total_assigned_labels
        }

    def get_metrics(self):
        """Get current processing metrics."""
        return {
            "basic_metrics": self.metrics.get_metrics(),
            "performance_metrics": performance_monitor.get_metrics_dict(),
            "progress_info": self.get_progress_status()
        }

    async def test_connection(self) -> bool:
        """Test the connection to PhotoPrism."""
        return await self.client.test_connection()

    async def close(self):
        """Clean up resources."""
        await self.client.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
