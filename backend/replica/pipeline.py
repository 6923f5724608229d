"""
The clone pipeline: acquire -> detect -> assets -> materialize -> analyze
"""

from typing import List, Optional

import httpx

from .analyzers import AnalysisContext, Analyzer, default_analyzers, is_enabled
from .assets import AssetPipeline, extract_references
from .browser import PlaywrightCaptureService, RenderedCaptureService
from .detection import detect_page_builder, extract_metadata
from .errors import ReplicaError, StageError, ValidationError, attach_run
from .events import RunEventEmitter
from .fetcher import ProxyFailoverFetcher
from .log import get_logger
from .materializer import materialize
from .models import CloneOptions, CloneRun, RunStatus
from .progress import ProgressCallback, ProgressTracker
from .ratelimit import RateLimiter
from .repository import InMemoryRunRepository, RunRepository
from .strategy import StrategySelector
from .validation import validate_url
from .wordpress import WordPressClient

logger = get_logger("replica.pipeline")


class ClonePipeline:
    """
    Runs one clone request end to end.

    prepare() validates and registers a pending run; execute() drives it
    through the stages. The run is owned by execute() while it runs and the
    repository only ever receives snapshots.
    """

    def __init__(self, selector: StrategySelector, assets: AssetPipeline,
                 repository: RunRepository,
                 analyzers: Optional[List[Analyzer]] = None,
                 rate_limiter: Optional[RateLimiter] = None):
        self.selector = selector
        self.assets = assets
        self.repository = repository
        self.analyzers = analyzers if analyzers is not None else []
        self.rate_limiter = rate_limiter

    def prepare(self, url: str, options: Optional[CloneOptions] = None,
                identifier: str = "default") -> CloneRun:
        """
        Validate the request and save a pending run.

        Raises:
            ValidationError: bad URL or conflicting capture modes
            RateLimitError: identifier exceeded the clone rate
        """
        options = options or CloneOptions()
        modes = options.selected_capture_modes()
        if len(modes) > 1:
            raise ValidationError(
                f"Capture modes are mutually exclusive, got: {', '.join(m.value for m in modes)}"
            )

        url = validate_url(url)
        if self.rate_limiter is not None:
            self.rate_limiter.enforce(identifier)

        run = CloneRun(url=url)
        self.repository.put(run)
        logger.info(f"Created clone run for {url}", extra={"run_id": run.id})
        return run

    async def execute(self, run: CloneRun, options: Optional[CloneOptions] = None,
                      on_progress: Optional[ProgressCallback] = None) -> CloneRun:
        """
        Drive a pending run through every stage.

        On failure the run is moved to ERROR (progress frozen, partial
        document and assets kept), saved, attached to the exception as
        .run and the exception re-raised. Errors that are not ReplicaErrors
        are wrapped in StageError.
        """
        options = options or CloneOptions()
        events = RunEventEmitter(run, logger)
        tracker = ProgressTracker(run, events, on_progress)
        stage = "acquire"

        try:
            tracker.transition(RunStatus.ANALYZING)
            tracker.enter_stage("acquire", "Acquiring website", f"Starting clone of {run.url}")
            acquisition = await self.selector.acquire(run.url, options, events)
            run.strategy = acquisition.strategy
            run.source_html = acquisition.html
            run.html = acquisition.html
            tracker.report(20, f"Website acquired ({acquisition.strategy.value})")
            self._save(run)

            stage = "detect"
            tracker.enter_stage("detect", "Analyzing website structure")
            metadata = extract_metadata(acquisition.html)
            metadata.page_builder = detect_page_builder(acquisition.html)
            metadata.wordpress = acquisition.structured_info()
            if metadata.wordpress is not None and metadata.wordpress.page_builder:
                metadata.page_builder = metadata.wordpress.page_builder
            if acquisition.structured is not None:
                metadata.page_count = max(1, len(acquisition.structured.posts) + len(acquisition.structured.pages))
            metadata.degraded = list(acquisition.degraded)
            run.metadata = metadata
            events.success(
                "detect", f"Detected framework: {metadata.framework}",
                title=metadata.title, responsive=metadata.responsive,
            )
            self._save(run)

            stage = "assets"
            if options.include_assets:
                tracker.transition(RunStatus.CLONING)
                tracker.enter_stage("assets", "Downloading assets")
                parsed = extract_references(acquisition.html, run.url)
                run.assets = await self.assets.run(parsed, events)
            else:
                tracker.enter_stage("assets", "Skipping assets", "Asset download disabled")
            self._save(run)

            stage = "materialize"
            tracker.enter_stage("materialize", "Rewriting HTML")
            layout = acquisition.capture.layout if acquisition.capture is not None else None
            run.html = materialize(acquisition.html, run.assets, layout, options.output_mode)
            run.metadata.asset_count = sum(1 for asset in run.assets if not asset.is_synthetic)
            run.metadata.total_size = sum(asset.size for asset in run.assets)
            events.success(
                "materialize", f"Materialized document ({len(run.html)} characters)",
                assets=run.metadata.asset_count, total_size=run.metadata.total_size,
            )
            self._save(run)

            stage = "analyze"
            tracker.enter_stage("analyze", "Running analysis")
            await self._analyze(run, options, events, tracker)
            tracker.complete()
            events.success("clone", "Clone completed successfully")
            self._save(run)
            return run

        except Exception as e:
            error = e if isinstance(e, ReplicaError) else StageError(stage, f"{stage} stage failed: {e}", cause=e)
            tracker.fail(error)
            try:
                self._save(run)
            except Exception as save_error:
                logger.warning(f"Could not save failed run: {save_error}", extra={"run_id": run.id})
            attach_run(error, run)
            if error is e:
                raise
            raise error from e

    async def clone(self, url: str, options: Optional[CloneOptions] = None,
                    on_progress: Optional[ProgressCallback] = None,
                    identifier: str = "default") -> CloneRun:
        run = self.prepare(url, options, identifier)
        return await self.execute(run, options, on_progress)

    async def _analyze(self, run: CloneRun, options: CloneOptions,
                       events: RunEventEmitter, tracker: ProgressTracker):
        context = AnalysisContext(
            url=run.url,
            html=run.html or "",
            source_html=run.source_html or "",
            metadata=run.metadata,
            assets=run.assets,
            options=options,
        )
        enabled = [analyzer for analyzer in self.analyzers if is_enabled(analyzer, options)]

        for index, analyzer in enumerate(enabled):
            tracker.report(90 + (index * 9) // max(1, len(enabled)), f"Running {analyzer.name} analysis")
            try:
                result = await analyzer.analyze(context)
            except Exception as e:
                events.warning("analyze", f"{analyzer.name} analysis failed: {e}")
                continue

            run.analysis[analyzer.name] = result
            if analyzer.name == "performance" and result.get("score") is not None:
                run.score = result["score"]
            events.info("analyze", f"{analyzer.name} analysis complete")

    def _save(self, run: CloneRun):
        self.repository.put(run)


def build_pipeline(client: Optional[httpx.AsyncClient] = None,
                   repository: Optional[RunRepository] = None,
                   capture: Optional[RenderedCaptureService] = None,
                   rate_limiter: Optional[RateLimiter] = None) -> ClonePipeline:
    """Wire a pipeline with the default collaborators sharing one HTTP client"""
    client = client or httpx.AsyncClient(follow_redirects=True)
    selector = StrategySelector(
        fetcher=ProxyFailoverFetcher(client),
        wordpress=WordPressClient(client),
        capture=capture or PlaywrightCaptureService(),
    )
    return ClonePipeline(
        selector=selector,
        assets=AssetPipeline(client),
        repository=repository or InMemoryRunRepository(),
        analyzers=default_analyzers(client),
        rate_limiter=rate_limiter or RateLimiter(),
    )
