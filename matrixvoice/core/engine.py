"""
Matrix Core Engine - The Composition Root
==========================================

The Engine doesn't DO the work itself; it builds the pieces that do,
wires them together and owns their lifecycle:

  1. Build   — create collaborators from configuration
  2. Start   — start every module, isolating failures
  3. Stop    — stop modules in reverse order, close network clients

LEARNING POINT: Abstract Base Classes (ABC)
---------------------------------------------
Every long-lived component follows the `Module` contract: a name, the
shared event bus, and async start/stop. The engine only talks to that
contract, so tests can register fakes.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from matrixvoice.core.event_bus import EventBus
from matrixvoice.io.config import Config, get_config
from matrixvoice.utils.logger import setup_logger


logger = setup_logger(__name__)


class Module(ABC):
    """
    Abstract base class that all Matrix modules implement.

    If a subclass forgets an abstract method, Python raises TypeError at
    instantiation time.
    """

    def __init__(self, name: str, event_bus: EventBus):
        self.name = name
        self.event_bus = event_bus
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @abstractmethod
    async def start(self) -> None:
        """Start the module. Must be implemented by subclasses."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the module and clean up resources."""
        ...

    async def emit(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        """Publish an event tagged with this module's name."""
        if data is None:
            data = {}
        data["source_module"] = self.name
        await self.event_bus.publish(event_type, data)


class MatrixEngine:
    """
    Builds and runs one voice session: recognition, speech output,
    reasoning client, interaction log and the conversation controller.

    LEARNING POINT: Dependency Injection
    -------------------------------------
    `MatrixEngine.from_config()` is the only place that chooses concrete
    collaborators. Everything below it receives its dependencies.
    """

    def __init__(self, event_bus: EventBus | None = None):
        self.event_bus = event_bus or EventBus()
        self._modules: list[Module] = []
        self._closeables: list[Any] = []
        self._running = False

        self.conversation = None
        self.recognition = None

        self.event_bus.subscribe("system.module_error", self._on_module_error)

    @classmethod
    def from_config(cls, config: Config | None = None, event_bus: EventBus | None = None) -> "MatrixEngine":
        """
        Build a fully wired engine from configuration.

        Imports are local: the concrete modules import `Module` from here.
        """
        from matrixvoice.api.dispatcher import CommandDispatcher
        from matrixvoice.api.interaction_log import InteractionLogger, build_store, classify_device
        from matrixvoice.api.reasoning import ReasoningClient, SessionContext
        from matrixvoice.core.conversation import ConversationController
        from matrixvoice.speech.recognizer import RemoteRecognition
        from matrixvoice.speech.synthesizer import SpeechOutput, SystemSynthesis
        from matrixvoice.voice.wake_word import WakePhraseMatcher

        config = config or get_config()
        engine = cls(event_bus=event_bus)
        bus = engine.event_bus

        matcher = WakePhraseMatcher(
            phrases=config.get("wake.phrases"),
            threshold=float(config.get("wake.fuzzy_threshold", 0.7)),
        )

        speech = SpeechOutput(
            bus,
            backend=SystemSynthesis(),
            voice_preferences=config.get("speech.voice_preferences", []),
            rate=float(config.get("speech.rate", 1.0)),
            pitch=float(config.get("speech.pitch", 1.0)),
        )

        recognition = RemoteRecognition(bus, language=config.get("voice.language", "en-US"))

        store = build_store(config)
        interaction_log = InteractionLogger(
            bus,
            store=store,
            user_id=config.get("session.user_id"),
            device=classify_device(config.get("session.user_agent", "")),
            summary_limit=int(config.get("interactions.summary_limit", 200)),
        )

        client = ReasoningClient(
            base_url=config.get("reasoning.url"),
            function=config.get("reasoning.function"),
            api_key=config.get("reasoning.api_key"),
            timeout=float(config.get("reasoning.timeout", 30.0)),
        )
        engine._closeables.append(client)

        tone = config.get("voice.tone", "professional")
        dispatcher = CommandDispatcher(
            client,
            interaction_log,
            SessionContext(user_id=config.get("session.user_id"), tone=tone),
        )

        controller = ConversationController(
            bus,
            matcher=matcher,
            recognition=recognition,
            speech=speech,
            dispatcher=dispatcher,
            interaction_log=interaction_log,
            tone=tone,
            auto_resume=bool(config.get("voice.auto_listen", True)),
        )

        # Start order: collaborators first, controller last; stop runs reversed
        for module in (interaction_log, speech, controller):
            engine.register_module(module)

        engine.conversation = controller
        engine.recognition = recognition
        return engine

    @property
    def modules(self) -> list[Module]:
        return list(self._modules)

    @property
    def is_running(self) -> bool:
        return self._running

    def register_module(self, module: Module) -> None:
        self._modules.append(module)
        logger.info(f"Module registered: {module.name}")

    async def start(self) -> None:
        """
        Start all registered modules.

        Each module starts in its own try/except block: a synthesis failure
        must not prevent typed commands from working.
        """
        logger.info("Matrix Engine starting...")
        for module in self._modules:
            try:
                await module.start()
                logger.info(f"  [OK] {module.name}")
            except Exception as e:
                logger.error(f"  [FAIL] {module.name}: {e}")
                await self.event_bus.publish("system.module_error", {"module": module.name, "error": str(e)})

        self._running = True
        await self.event_bus.publish("system.ready", {
            "modules_loaded": [m.name for m in self._modules if m.is_running],
        })
        logger.info("Matrix is ready.")

    async def shutdown(self) -> None:
        """Stop all modules (last started = first stopped) and close clients."""
        if not self._running:
            return

        logger.info("Shutting down Matrix...")
        self._running = False

        for module in reversed(self._modules):
            try:
                await module.stop()
                logger.info(f"  [STOPPED] {module.name}")
            except Exception as e:
                logger.error(f"  [ERROR] stopping {module.name}: {e}")

        for closeable in self._closeables:
            try:
                await closeable.aclose()
            except Exception as e:
                logger.error(f"  [ERROR] closing {type(closeable).__name__}: {e}")

    async def run_forever(self) -> None:
        """Keep the process alive until shutdown() is called."""
        while self._running:
            await asyncio.sleep(0.1)

    async def _on_module_error(self, data: dict) -> None:
        logger.error(f"Module error in {data.get('module')}: {data.get('error')}")
