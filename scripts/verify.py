"""Real-world walkthrough of a short rotation."""

from turn_rotation.controller import SessionContext, TurnController
from turn_rotation.model import Settings, TurnEventType
from turn_rotation.scheduler import ManualTicker
from turn_rotation.storage import MemoryStorage, SessionStore


# 1. Setup roster with one-minute turns and a one-minute warning
store = SessionStore(MemoryStorage())
controller = TurnController(
    SessionContext(settings=Settings(warning_minutes=1), device_id="demo"),
    store=store,
)
controller.add_person("Ana", turn_minutes=1)
controller.add_person("Ben", turn_minutes=2)

# 2. Start the rotation
result = controller.start_rotation()
print(f"Order: {[e.name for e in controller.context.queue.entries]}")
for event in result.events:
    print(f"  {event.message}")

# 3. Run the first turn 45 seconds past its time
controller.start_timer()
ticker = ManualTicker(controller.tick)
for tick in ticker.fire(controller.timer.state.total_seconds + 45):
    for event in tick.events:
        print(f"  [{event.event_type.value}] {event.message}")
print(f"Display: {controller.view().display}")

# 4. Finish and check what the rules decided
first = controller.context.queue.current
result = controller.finish_current_turn()
for event in result.events:
    print(f"  [{event.event_type.value}] {event.message}")
person = controller.context.find_person(first.person_id)
print(f"{person.name}'s next turn: {person.default_turn_seconds // 60} min")

# 5. Finish the rotation
result = controller.finish_current_turn()
if result.events and result.events[-1].event_type == TurnEventType.ROTATION_COMPLETE:
    print("Rotation complete")
for line in controller.usage_report():
    print(f"  {line.name}: {line.total_usage_seconds // 60} min ({line.share_percent}%)")
