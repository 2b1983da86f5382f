from .errors import DriverError
from .logger import get_logger
from .models import CollectionReport, generation_of


class GarbageCollector:
    """Deletes units and templates left behind by earlier generations"""

    def __init__(self, driver, config):
        self.driver = driver
        self.config = config
        self.logger = get_logger("collector")

    async def _stale(self, lister, prefix, generation, kind):
        try:
            names = await lister(prefix)
        except DriverError as e:
            self.logger.warning(f"Could not list {kind}s with prefix {prefix!r}: {e}")
            return []
        return [n for n in names if generation_of(n, prefix) not in (None, generation)]

    async def collect(self, generation):
        report = CollectionReport()

        stale_units = await self._stale(self.driver.list_units, self.config.unit_prefix, generation, "unit")
        stale_templates = await self._stale(
            self.driver.list_templates, self.config.template_prefix, generation, "template"
        )
        if not stale_units and not stale_templates:
            self.logger.info("No old resources to delete")
            return report

        self.logger.info(f"Deleting {len(stale_units)} old units and {len(stale_templates)} old templates")

        # Units first: a template can't be deleted while a unit still uses it
        for name in stale_units:
            try:
                await self.driver.delete_unit(name)
                report.deleted_units.append(name)
                self.logger.info(f"Deleted unit {name}")
            except DriverError as e:
                report.failures[name] = str(e)
                self.logger.warning(f"Failed to delete unit {name}: {e}")

        for name in stale_templates:
            try:
                await self.driver.delete_template(name)
                report.deleted_templates.append(name)
                self.logger.info(f"Deleted template {name}")
            except DriverError as e:
                report.failures[name] = str(e)
                self.logger.warning(f"Failed to delete template {name}: {e}")

        if report.failures:
            self.logger.warning(f"{len(report.failures)} old resources could not be deleted; retrying next rollout")
        return report
