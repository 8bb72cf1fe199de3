"""Training/inference lifecycle for one federated run.

A session starts in TRAINING mode with a population of learning clients.
Switching to INFERENCE aggregates the population into one table, saves
it through the persistence port and builds a single frozen agent for
evaluation; the client population is parked so that switching back to
TRAINING resumes exactly where it left off.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .config import FedRLConfig
from .errors import AggregationError
from .evaluation.inference import (
    EvaluationResult,
    create_inference_agent,
    export_evaluation_results,
    run_evaluation,
)
from .federated.coordinator import FederationRound
from .federated.persistence import InMemoryPersistence, PersistencePort
from .metrics.kpi import EpisodeTracker, MetricsConfig
from .rl.q_learning import TabularQAgent
from .rl.train import Client, FederatedTrainer
from .tables import QTable

logger = logging.getLogger(__name__)


class Mode(Enum):
    TRAINING = "training"
    INFERENCE = "inference"


class FederatedSession:
    """Owns the trainer, the frozen agent and the persistence port of one run.

    Hooks (all optional):
        on_client_init(client), on_episode_end(client, record),
        on_federation(global_model, round_number, delta): forwarded to the trainer.
        on_evaluation_progress(record, running_stats, completed, total)
        on_evaluation_complete(result)
        notify(message): user-visible messages such as evaluation failures.
        render(surface, observation, client_info) with surface_factory(client_id).
    """

    def __init__(
        self,
        env: Any,
        config: Optional[FedRLConfig] = None,
        persistence: Optional[PersistencePort] = None,
        metrics_config: Optional[MetricsConfig] = None,
        on_client_init: Optional[Callable[..., Any]] = None,
        on_episode_end: Optional[Callable[..., Any]] = None,
        on_federation: Optional[Callable[..., Any]] = None,
        on_evaluation_progress: Optional[Callable[..., Any]] = None,
        on_evaluation_complete: Optional[Callable[[EvaluationResult], Any]] = None,
        notify: Optional[Callable[[str], Any]] = None,
        render: Optional[Callable[..., Any]] = None,
        surface_factory: Optional[Callable[[int], Any]] = None,
    ):
        """Initialize session.

        Raises:
            EnvironmentContractError: If ``env`` is incomplete.
        """
        self.trainer = FederatedTrainer(
            env,
            config,
            metrics_config=metrics_config,
            on_client_init=on_client_init,
            on_episode_end=on_episode_end,
            on_federation=on_federation,
            render=render,
            surface_factory=surface_factory,
        )
        self.env = env
        self.config = self.trainer.config
        self.persistence = persistence or InMemoryPersistence(self.config.training.app_name)
        self.metrics_config = metrics_config

        self.on_evaluation_progress = on_evaluation_progress
        self.on_evaluation_complete = on_evaluation_complete
        self._notify = notify
        self.render = render
        self.surface_factory = surface_factory

        self.mode = Mode.TRAINING
        self.inference_agent: Optional[TabularQAgent] = None
        self.loaded_model: Optional[QTable] = None
        self.loaded_metadata: Dict[str, Any] = {}
        self._parked_clients: Optional[List[Client]] = None

        self._run_task: Optional[asyncio.Task] = None
        self._eval_task: Optional[asyncio.Task] = None
        self._eval_cancel: Optional[asyncio.Event] = None
        self.evaluation_running = False
        self.evaluation_completed = 0
        self.evaluation_total = 0
        self.last_evaluation: Optional[EvaluationResult] = None

    # ── Training loop ────────────────────────────────────────────────

    @property
    def coordinator(self):
        return self.trainer.coordinator

    @property
    def clients(self) -> List[Client]:
        return self.trainer.clients

    @property
    def is_running(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    def notify(self, message: str) -> None:
        logger.info("%s", message)
        if self._notify is not None:
            self._notify(message)

    async def tick(self) -> Optional[FederationRound]:
        """Advance the training population by one step."""
        if self.mode is not Mode.TRAINING:
            raise RuntimeError("tick() is only valid in training mode")
        return await self.trainer.tick()

    async def run_ticks(self, n_ticks: int) -> List[FederationRound]:
        """Run ``n_ticks`` ticks and return the rounds that fired."""
        rounds = []
        for _ in range(n_ticks):
            record = await self.tick()
            if record is not None:
                rounds.append(record)
        return rounds

    async def _run_loop(self) -> None:
        while True:
            await self.trainer.tick()
            await asyncio.sleep(self.config.training.tick_interval)

    def start(self) -> Optional[asyncio.Task]:
        """Schedule the tick loop on the running event loop."""
        if self.mode is not Mode.TRAINING:
            logger.warning("Cannot start training while in %s mode", self.mode.value)
            return None
        if not self.is_running:
            self._run_task = asyncio.get_running_loop().create_task(self._run_loop())
        return self._run_task

    def pause(self) -> None:
        """Cancel the tick loop; learning state is kept."""
        if self._run_task is not None:
            self._run_task.cancel()
            self._run_task = None

    async def close(self) -> None:
        """Cancel every scheduled task and wait for them to stop."""
        tasks = [t for t in (self._run_task, self._eval_task) if t is not None]
        self.pause()
        self.stop_evaluation()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._eval_task = None
        self._eval_cancel = None
        self.evaluation_running = False

    def federate(self) -> Optional[FederationRound]:
        """Run a federation round on demand."""
        if self.mode is not Mode.TRAINING:
            logger.warning("Federation is only available in training mode")
            return None
        return self.trainer.federate()

    def set_auto_federate(self, enabled: bool) -> None:
        self.coordinator.set_auto_federate(enabled)

    def set_client_count(self, n_clients: int) -> int:
        """Resize the population; resets learning."""
        self.pause()
        self._parked_clients = None
        return self.trainer.set_client_count(n_clients)

    def set_render_interval(self, interval: int) -> int:
        return self.trainer.set_render_interval(interval)

    def apply_hyperparameters(self, alpha: Optional[float] = None, gamma: Optional[float] = None) -> None:
        self.trainer.apply_hyperparameters(alpha=alpha, gamma=gamma)

    def reset(self, n_clients: Optional[int] = None) -> None:
        """Discard all learning and federation state and return to training."""
        self.pause()
        if self._eval_task is not None and not self._eval_task.done():
            self._eval_task.cancel()
        self._eval_task = None
        self._parked_clients = None
        self.inference_agent = None
        self.mode = Mode.TRAINING
        self.trainer.reset(n_clients)
        self._reset_evaluation_state()

    def global_stats(self) -> Dict[str, Any]:
        stats = self.trainer.global_stats()
        stats["mode"] = self.mode.value
        return stats

    # ── Mode switching ───────────────────────────────────────────────

    def _checkpoint_metadata(self, clients: List[Client]) -> Dict[str, Any]:
        avg_episodes = (
            sum(c.metrics.episode_count for c in clients) / len(clients) if clients else 0.0
        )
        return {
            "numClients": len(clients),
            "federationRound": self.coordinator.round_number,
            "avgEpisodes": avg_episodes,
        }

    def current_model(self) -> Optional[QTable]:
        """Canonical table for the active mode."""
        if self.mode is Mode.INFERENCE:
            return self.inference_agent.get_model() if self.inference_agent else None
        try:
            return self.trainer.aggregate()
        except AggregationError as exc:
            logger.warning("No model to aggregate: %s", exc)
            return None

    def switch_to_inference(self) -> Optional[TabularQAgent]:
        """Freeze the population into one evaluation agent.

        Returns:
            The frozen agent, or None if there was nothing to aggregate.
        """
        if self.mode is Mode.INFERENCE:
            return self.inference_agent
        self.pause()

        model = self.current_model()
        if model is None:
            self.notify("No clients to aggregate; staying in training mode")
            return None

        metadata = self._checkpoint_metadata(self.clients)
        if not self.persistence.save(model, metadata):
            logger.warning("Could not persist the aggregated model")

        self._parked_clients = self.trainer.clients
        self.trainer.clients = []
        self.inference_agent = create_inference_agent(model, self.trainer.n_actions)
        self.mode = Mode.INFERENCE
        logger.info(
            "Switched to inference: %d states from %d clients",
            len(model),
            metadata["numClients"],
        )
        return self.inference_agent

    def switch_to_training(self) -> None:
        """Resume training with the parked population (or a fresh one)."""
        if self.mode is Mode.TRAINING:
            return
        self.stop_evaluation()
        if self._parked_clients:
            self.trainer.clients = self._parked_clients
        else:
            self.trainer.init_clients()
        self._parked_clients = None
        self.inference_agent = None
        self.mode = Mode.TRAINING
        logger.info("Switched to training with %d clients", len(self.clients))

    def toggle_mode(self) -> Mode:
        if self.mode is Mode.TRAINING:
            self.switch_to_inference()
        else:
            self.switch_to_training()
        return self.mode

    # ── Evaluation ───────────────────────────────────────────────────

    def _reset_evaluation_state(self) -> None:
        self.evaluation_running = False
        self.evaluation_completed = 0
        self.evaluation_total = 0
        self._eval_cancel = None

    def _fail_evaluation(self, message: str) -> None:
        logger.error("Evaluation not started: %s", message)
        self._reset_evaluation_state()
        self.notify(message)

    def _resolve_model(self, model_source: str) -> Optional[QTable]:
        if model_source == "loaded":
            if self.loaded_model is None:
                self._fail_evaluation("No model file loaded. Import a model first.")
                return None
            return self.loaded_model
        if model_source != "latest":
            self._fail_evaluation(f"Unknown model source: {model_source!r}")
            return None
        checkpoint = self.persistence.load()
        if checkpoint is None:
            self._fail_evaluation("No trained model found. Train first or import a model file.")
            return None
        return checkpoint["model"]

    def start_evaluation(
        self,
        n_episodes: Optional[int] = None,
        model_source: str = "latest",
    ) -> Optional[asyncio.Task]:
        """Schedule an evaluation run on the running event loop.

        Args:
            n_episodes: Episodes to run; defaults to the configured count.
            model_source: "latest" (persisted checkpoint) or "loaded" (imported).

        A run that was asked to stop but has not reached its next episode
        boundary is cancelled outright and replaced by the new one.

        Returns:
            The evaluation task, or None if the run could not start.
        """
        if self.mode is not Mode.INFERENCE:
            self._fail_evaluation("Switch to inference mode before evaluating.")
            return None
        if self.evaluation_running:
            if self._eval_cancel is None or not self._eval_cancel.is_set():
                logger.warning("Evaluation already running")
                return self._eval_task
            logger.info("Replacing stopped evaluation that has not finished yet")
            self._eval_task.cancel()
            self._reset_evaluation_state()

        if n_episodes is None:
            n_episodes = self.config.evaluation.default_test_episodes
        if n_episodes < 1:
            self._fail_evaluation("Number of test episodes must be at least 1.")
            return None

        model = self._resolve_model(model_source)
        if model is None:
            return None
        if not isinstance(model, dict) or not model:
            self._fail_evaluation("Invalid model checkpoint: no states learned.")
            return None

        self.inference_agent = create_inference_agent(model, self.trainer.n_actions)
        cancel = asyncio.Event()
        self._eval_cancel = cancel
        self.evaluation_running = True
        self.evaluation_completed = 0
        self.evaluation_total = n_episodes
        self._eval_task = asyncio.get_running_loop().create_task(
            self._evaluate(self.inference_agent, n_episodes, cancel)
        )
        return self._eval_task

    async def evaluate(
        self,
        n_episodes: Optional[int] = None,
        model_source: str = "latest",
    ) -> Optional[EvaluationResult]:
        """Start an evaluation and wait for its result."""
        task = self.start_evaluation(n_episodes, model_source)
        if task is None:
            return None
        return await task

    def stop_evaluation(self) -> None:
        """Request cancellation; it takes effect at the next episode boundary."""
        if self.evaluation_running and self._eval_cancel is not None:
            self._eval_cancel.set()

    def _on_episode(self, record, running, completed, total) -> None:
        self.evaluation_completed = completed
        if self.on_evaluation_progress is not None:
            self.on_evaluation_progress(record, running, completed, total)

    async def _evaluate(
        self, agent: TabularQAgent, n_episodes: int, cancel: asyncio.Event
    ) -> EvaluationResult:
        eval_config = self.config.evaluation
        surface = self.surface_factory(0) if self.surface_factory is not None else None
        try:
            result = await run_evaluation(
                self.env,
                agent,
                n_episodes,
                tracker=EpisodeTracker(self.metrics_config),
                max_steps=eval_config.max_steps_per_episode,
                on_episode_complete=self._on_episode,
                on_all_complete=self.on_evaluation_complete,
                should_cancel=cancel.is_set,
                render=self.render,
                surface=surface,
                render_every=eval_config.render_every,
                episode_delay=eval_config.episode_delay,
            )
        finally:
            # A replaced run must not clear the state of its successor.
            if self._eval_cancel is cancel:
                self.evaluation_running = False
                self._eval_cancel = None
        self.last_evaluation = result
        return result

    def export_evaluation_results(self, result: Optional[EvaluationResult] = None) -> Optional[Dict[str, Any]]:
        """Report for ``result`` (or the last evaluation)."""
        result = result or self.last_evaluation
        if result is None:
            self.notify("No evaluation results to export.")
            return None
        return export_evaluation_results(result, {"appName": self.persistence.app_name})

    # ── Checkpoints ──────────────────────────────────────────────────

    def save_checkpoint(self) -> bool:
        model = self.current_model()
        if model is None:
            self.notify("Nothing to save.")
            return False
        clients = self.clients if self.mode is Mode.TRAINING else (self._parked_clients or [])
        ok = self.persistence.save(model, self._checkpoint_metadata(clients))
        self.notify("Model saved." if ok else "Failed to save model.")
        return ok

    def _apply_model(self, model: QTable) -> None:
        if self.mode is Mode.TRAINING:
            for client in self.clients:
                client.agent.set_model(model)
        else:
            self.inference_agent = create_inference_agent(model, self.trainer.n_actions)

    def load_checkpoint(self) -> bool:
        """Load the latest checkpoint into the active mode's agents."""
        checkpoint = self.persistence.load()
        if checkpoint is None:
            self.notify("No saved model found.")
            return False
        self._apply_model(checkpoint["model"])
        self.notify(f"Loaded model with {len(checkpoint['model'])} states.")
        return True

    def export_model(self) -> bool:
        model = self.current_model()
        if model is None:
            self.notify("Nothing to export.")
            return False
        clients = self.clients if self.mode is Mode.TRAINING else (self._parked_clients or [])
        return self.persistence.export(model, self._checkpoint_metadata(clients))

    def _on_import(self, model: QTable, metadata: Dict[str, Any]) -> None:
        self.loaded_model = model
        self.loaded_metadata = metadata
        self._apply_model(model)
        self.notify(f"Imported model with {len(model)} states.")

    async def import_model(self) -> bool:
        """Import a model through the persistence port."""
        return await self.persistence.import_model(self._on_import, self.notify)
