"""Service for loading and managing tracking provider adapters."""

import importlib.util
import logging
from pathlib import Path

from trackdash.carriers.base import BaseCarrier, CarrierConfig
from trackdash.config import settings

logger = logging.getLogger(__name__)


class CarrierLoader:
    """Loads tracking provider adapters from the carriers directory."""

    def __init__(self, carriers_dir: Path | None = None):
        self.carriers_dir = carriers_dir or settings.carriers_dir
        self._carriers: dict[str, BaseCarrier] = {}
        self._configs: dict[str, CarrierConfig] = {}

    def load_all(self) -> dict[str, BaseCarrier]:
        """Load all adapters from the carriers directory."""
        if self._carriers:
            return self._carriers

        for carrier_dir in sorted(self.carriers_dir.iterdir()):
            if not carrier_dir.is_dir():
                continue
            if carrier_dir.name.startswith("_") or carrier_dir.name.startswith("."):
                continue

            self._load_carrier(carrier_dir)

        return self._carriers

    def _load_carrier(self, carrier_dir: Path) -> None:
        """Load a single adapter."""
        config_path = carrier_dir / "carrier.yaml"
        tracker_path = carrier_dir / "tracker.py"

        if not config_path.exists():
            logger.debug("Skipping %s: no carrier.yaml", carrier_dir.name)
            return

        try:
            config = CarrierConfig.from_yaml(config_path)
        except (OSError, KeyError, ValueError) as e:
            logger.error("Error loading config for %s: %s", carrier_dir.name, e)
            return

        if not config.enabled:
            logger.info("Skipping %s: disabled", carrier_dir.name)
            return

        self._configs[config.id] = config

        if not tracker_path.exists():
            logger.warning("%s has no tracker.py", carrier_dir.name)
            return

        spec = importlib.util.spec_from_file_location(
            f"trackdash.carriers.{carrier_dir.name}.tracker",
            tracker_path,
        )
        if spec is None or spec.loader is None:
            logger.error("Error loading tracker for %s: invalid spec", carrier_dir.name)
            return

        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        # Find the adapter class (a subclass of BaseCarrier)
        carrier_class = None
        for name in dir(module):
            obj = getattr(module, name)
            if isinstance(obj, type) and issubclass(obj, BaseCarrier) and obj is not BaseCarrier:
                carrier_class = obj
                break

        if carrier_class is None:
            logger.error("No carrier class found in %s", tracker_path)
            return

        self._carriers[config.id] = carrier_class(config)
        logger.info("Loaded tracking provider: %s", config.name)

    def get_carrier(self, carrier_id: str) -> BaseCarrier | None:
        """Get an adapter by ID."""
        if not self._carriers:
            self.load_all()
        return self._carriers.get(carrier_id)

    def get_tracker(self) -> BaseCarrier:
        """Get the adapter configured as the tracking provider."""
        carrier = self.get_carrier(settings.tracking_provider)
        if carrier is None:
            raise LookupError(f"Tracking provider {settings.tracking_provider!r} is not loaded")
        return carrier

    def get_config(self, carrier_id: str) -> CarrierConfig | None:
        """Get an adapter config by ID."""
        if not self._configs:
            self.load_all()
        return self._configs.get(carrier_id)

    def list_carriers(self) -> list[CarrierConfig]:
        """List all loaded adapter configurations."""
        if not self._configs:
            self.load_all()
        return list(self._configs.values())

    async def aclose(self) -> None:
        for carrier in self._carriers.values():
            await carrier.aclose()


# Global carrier loader instance
carrier_loader = CarrierLoader()
