from .logger import get_logger


class RollbackManager:
    def __init__(self, driver):
        self.driver = driver
        self.logger = get_logger("rollback")

    async def rollback(self, unit, template):
        """Delete a failed generation's unit, then its template.

        Best-effort: runs on an already failing path, so every error is
        logged and swallowed. Either argument may be None when that resource
        was never created.
        """
        self.logger.warning(f"Rolling back unit={unit} template={template}")
        clean = True

        if unit:
            try:
                await self.driver.delete_unit(unit)
                self.logger.info(f"Deleted unit {unit}")
            except Exception as e:
                clean = False
                self.logger.error(f"Failed to delete unit {unit}: {e}")

        if template:
            try:
                await self.driver.delete_template(template)
                self.logger.info(f"Deleted template {template}")
            except Exception as e:
                clean = False
                self.logger.error(f"Failed to delete template {template}: {e}")

        if clean:
            self.logger.info("Rollback completed")
        else:
            self.logger.warning("Rollback completed with errors; leftovers are removed by the next rollout's cleanup")
        return clean
