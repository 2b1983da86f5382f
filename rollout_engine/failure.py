class FailureInjector:
    """Decides which simulated platform calls misbehave.

    fail_calls maps (operation, target) to the number of calls that should
    fail before the call starts succeeding; a negative count fails forever.
    lost_replies holds (operation, target) pairs whose change is applied
    even though the call reports a failure, like a command that times out
    after the platform acted on it.
    """

    def __init__(self, fail_calls=None, stuck_units=None, unhealthy_units=None,
                 sticky_members=None, lost_replies=None, delay=0):
        self.fail_map = dict(fail_calls or {})
        self.stuck_units = set(stuck_units or ())
        self.unhealthy_units = set(unhealthy_units or ())
        self.sticky_members = set(sticky_members or ())
        self.lost_replies = set(lost_replies or ())
        self.delay = delay
        self.attempts = {}

    def delay_seconds(self):
        return self.delay

    def should_fail(self, operation, target):
        key = (operation, target)
        self.attempts[key] = self.attempts.get(key, 0) + 1
        budget = self.fail_map.get(key, 0)
        if budget < 0:
            return True
        return self.attempts[key] <= budget

    def is_stuck(self, unit):
        return unit in self.stuck_units

    def is_unhealthy(self, unit):
        return unit in self.unhealthy_units

    def is_sticky(self, unit):
        return unit in self.sticky_members

    def loses_reply(self, operation, target):
        return (operation, target) in self.lost_replies
