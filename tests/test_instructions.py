"""Tests for instruction parsing and the instruction runner."""

import asyncio

import pytest

from tests.conftest import FakeElement
from webrelay.errors import InstructionValidationError
from webrelay.instructions.service import InstructionRunner
from webrelay.shared_views import (
	ClickInstruction,
	ElementDescriptor,
	LocateInstruction,
	NavigateInstruction,
	WaitInstruction,
	parse_instruction,
	parse_instructions,
)


def locate(runner: InstructionRunner, name: str, selector: str) -> None:
	instruction = parse_instruction(
		{'type': 'locate_element', 'id': f'locate-{name}', 'element': {'name': name, 'selector': selector}}
	)
	result = asyncio.run(runner.execute(instruction))
	assert result.success, result.error


# ==================== PARSING ====================


def test_parse_instruction_accepts_wire_aliases():
	instruction = parse_instruction({'type': 'click', 'id': 'c1', 'elementName': 'btn', 'clickType': 'double', 'offsetX': 5})
	assert isinstance(instruction, ClickInstruction)
	assert instruction.element_name == 'btn'
	assert instruction.click_type == 'double'
	assert instruction.offset_x == 5


def test_parse_instruction_rejects_unknown_type():
	with pytest.raises(InstructionValidationError):
		parse_instruction({'type': 'teleport', 'id': 'x'})


def test_parse_instructions_from_json_string():
	instructions = parse_instructions('[{"type": "navigate", "id": "n1", "url": "https://example.com"}, {"type": "wait", "id": "w1", "waitType": "time", "value": 1}]')
	assert [type(i) for i in instructions] == [NavigateInstruction, WaitInstruction]


def test_parse_instructions_single_object_becomes_list():
	instructions = parse_instructions({'type': 'navigate', 'id': 'n1', 'url': 'https://example.com'})
	assert len(instructions) == 1


def test_instructions_are_immutable():
	instruction = parse_instruction({'type': 'navigate', 'id': 'n1', 'url': 'https://example.com'})
	with pytest.raises(Exception):
		instruction.url = 'https://other.example.com'


# ==================== VALIDATION ====================


def test_invalid_instruction_fails_without_touching_document(bridge, fast_config):
	runner = InstructionRunner(bridge, config=fast_config)
	result = asyncio.run(runner.execute(ClickInstruction(id='c1')))

	assert not result.success
	assert 'Element name is required' in result.error
	assert bridge.calls == []


def test_instruction_without_id_is_invalid(bridge, fast_config):
	runner = InstructionRunner(bridge, config=fast_config)
	result = asyncio.run(runner.execute(NavigateInstruction(url='https://example.com')))
	assert not result.success
	assert 'type and id are required' in result.error


# ==================== LOCATE / CLICK ====================


def test_locate_registers_element(bridge, fast_config):
	bridge.add('#btn', FakeElement('h1'))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'btn', '#btn')

	descriptor = runner.registry.get('btn')
	assert descriptor is not None
	assert descriptor.handle.handle_id == 'h1'


def test_locate_missing_element_fails(bridge, fast_config):
	runner = InstructionRunner(bridge, config=fast_config)
	instruction = LocateInstruction(id='l1', element=ElementDescriptor(name='ghost', selector='#ghost'))
	result = asyncio.run(runner.execute(instruction))

	assert not result.success
	assert 'not found' in result.error
	assert not runner.registry.has('ghost')


def test_click_uses_box_center_plus_offset(bridge, fast_config):
	bridge.add('#btn', FakeElement('h1', rect={'left': 40, 'top': 50, 'width': 50, 'height': 40}))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'btn', '#btn')

	result = asyncio.run(runner.execute(ClickInstruction(id='c1', element_name='btn')))
	assert result.success
	assert (result.data['x'], result.data['y']) == (65, 70)
	assert [call[2] for call in bridge.events('mouse')] == ['mousedown', 'mouseup', 'click']

	asyncio.run(runner.execute(ClickInstruction(id='c2', element_name='btn', offset_x=5, offset_y=-10)))
	x, y = bridge.events('mouse')[-1][3:5]
	assert (x, y) == (70, 60)


def test_double_click_ends_with_dblclick(bridge, fast_config):
	bridge.add('#btn', FakeElement('h1'))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'btn', '#btn')

	result = asyncio.run(runner.execute(ClickInstruction(id='c1', element_name='btn', click_type='double', button='right')))
	assert result.success
	mouse = bridge.events('mouse')
	assert [call[2] for call in mouse] == ['mousedown', 'mouseup', 'click', 'mousedown', 'mouseup', 'click', 'dblclick']
	assert all(call[5] == 2 for call in mouse)


def test_click_reresolves_stale_handle(bridge, fast_config):
	bridge.add('#btn', FakeElement('h1'))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'btn', '#btn')

	bridge.elements['h1'].attached = False
	bridge.add('#btn', FakeElement('h2'))

	result = asyncio.run(runner.execute(ClickInstruction(id='c1', element_name='btn')))
	assert result.success
	assert bridge.events('mouse')[0][1] == 'h2'
	assert runner.registry.get('btn').handle.handle_id == 'h2'


def test_retry_budget_counts_attempts(bridge, fast_config):
	runner = InstructionRunner(bridge, config=fast_config)
	runner.registry.set(ElementDescriptor(name='ghost', selector='#ghost'))

	result = asyncio.run(runner.execute(ClickInstruction(id='c1', element_name='ghost', retry=3)))
	assert not result.success
	assert bridge.resolve_count == 3

	bridge.resolve_count = 0
	asyncio.run(runner.execute(ClickInstruction(id='c2', element_name='ghost', retry=0)))
	assert bridge.resolve_count == 1


def test_unregistered_element_fails(bridge, fast_config):
	runner = InstructionRunner(bridge, config=fast_config)
	result = asyncio.run(runner.execute(ClickInstruction(id='c1', element_name='nowhere')))
	assert not result.success
	assert 'not registered' in result.error


# ==================== TEXT / KEYS ====================


def test_input_text_types_each_character(bridge, fast_config):
	field = bridge.add('#name', FakeElement('h1', tag='INPUT', editable=True))
	field.value = 'old'
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'name', '#name')

	instruction = parse_instruction(
		{'type': 'input_text', 'id': 't1', 'elementName': 'name', 'text': 'ab', 'clearFirst': True, 'timeDelay': 0}
	)
	result = asyncio.run(runner.execute(instruction))

	assert result.success
	assert field.value == 'ab'
	assert [call[2] for call in bridge.events('key')] == ['keydown', 'keyup', 'keydown', 'keyup']
	assert bridge.calls[-1] == ('change', 'h1')


def test_input_text_rejects_non_editable_element(bridge, fast_config):
	bridge.add('#label', FakeElement('h1'))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'label', '#label')

	instruction = parse_instruction({'type': 'input_text', 'id': 't1', 'elementName': 'label', 'text': 'x'})
	result = asyncio.run(runner.execute(instruction))
	assert not result.success
	assert 'not editable' in result.error


def test_key_press_applies_shift(bridge, fast_config):
	field = bridge.add('#name', FakeElement('h1', tag='INPUT', editable=True))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'name', '#name')

	instruction = parse_instruction({'type': 'key_press', 'id': 'k1', 'elementName': 'name', 'key': 'a', 'modifiers': ['Shift']})
	result = asyncio.run(runner.execute(instruction))

	assert result.success
	assert result.data['key'] == 'A'
	keydown = bridge.events('key')[0]
	assert keydown[3:5] == ('A', 'KeyA')
	assert keydown[5]['shift'] is True
	assert field.value == 'A'
	assert bridge.calls[-1] == ('change', 'h1')


def test_get_text_updates_descriptor(bridge, fast_config):
	bridge.add('#title', FakeElement('h1', text='Hello'))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'title', '#title')

	instruction = parse_instruction({'type': 'get_text', 'id': 'g1', 'elementName': 'title'})
	result = asyncio.run(runner.execute(instruction))

	assert result.success
	assert result.data['text'] == 'Hello'
	assert runner.registry.get('title').text == 'Hello'


# ==================== NAVIGATE / WAIT ====================


def test_navigate_calls_bridge(bridge, fast_config):
	runner = InstructionRunner(bridge, config=fast_config)
	result = asyncio.run(runner.execute(NavigateInstruction(id='n1', url='https://example.com/next')))
	assert result.success
	assert bridge.navigations == ['https://example.com/next']


def test_time_wait_requires_number(bridge, fast_config):
	runner = InstructionRunner(bridge, config=fast_config)
	ok = asyncio.run(runner.execute(WaitInstruction(id='w1', wait_type='time', value=0)))
	bad = asyncio.run(runner.execute(WaitInstruction(id='w2', wait_type='time', value='soon')))
	assert ok.success
	assert not bad.success


def test_network_wait_never_fails(bridge, fast_config):
	runner = InstructionRunner(bridge, config=fast_config)

	idle = asyncio.run(runner.execute(WaitInstruction(id='w1', wait_type='network', value=True, timeout=1)))
	assert idle.success
	assert idle.data['idle'] is True

	bridge.pending = 2
	busy = asyncio.run(runner.execute(WaitInstruction(id='w2', wait_type='network', value=True, timeout=0.05)))
	assert busy.success
	assert busy.data['idle'] is False


def test_element_wait_times_out(bridge, fast_config):
	runner = InstructionRunner(bridge, config=fast_config)
	result = asyncio.run(runner.execute(WaitInstruction(id='w1', wait_type='element', value='missing', timeout=0.05)))
	assert not result.success
	assert 'Timeout' in result.error


def test_condition_wait_uses_registered_predicate(bridge, fast_config):
	runner = InstructionRunner(bridge, config=fast_config)
	calls = []

	def ready() -> bool:
		calls.append(1)
		return len(calls) >= 2

	runner.register_condition('ready', ready)
	result = asyncio.run(runner.execute(WaitInstruction(id='w1', wait_type='condition', value='ready', timeout=1)))
	assert result.success
	assert len(calls) == 2


def test_unknown_condition_fails_without_retry(bridge, fast_config):
	runner = InstructionRunner(bridge, config=fast_config)
	result = asyncio.run(runner.execute(WaitInstruction(id='w1', wait_type='condition', value='nope', retry=3)))
	assert not result.success
	assert 'No condition registered' in result.error


def test_function_wait_accepts_async_callback(bridge, fast_config):
	runner = InstructionRunner(bridge, config=fast_config)

	async def loaded() -> bool:
		return True

	runner.register_function('loaded', loaded)
	result = asyncio.run(runner.execute(WaitInstruction(id='w1', wait_type='function', value='loaded', timeout=1)))
	assert result.success


# ==================== DRAG ====================


def test_drag_emits_protocol_and_cleans_up(bridge, fast_config):
	bridge.add('#card', FakeElement('src', rect={'left': 0, 'top': 0, 'width': 20, 'height': 20}))
	bridge.add('#column', FakeElement('dst', rect={'left': 100, 'top': 0, 'width': 20, 'height': 20}))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'card', '#card')
	locate(runner, 'column', '#column')

	instruction = parse_instruction({'type': 'drag', 'id': 'd1', 'sourceName': 'card', 'targetName': 'column', 'duration': 0.05})
	result = asyncio.run(runner.execute(instruction))

	assert result.success
	assert result.data['steps'] == 5
	drag_types = [call[2] for call in bridge.events('drag')]
	assert drag_types[0] == 'dragstart'
	assert drag_types[-4:] == ['dragenter', 'dragover', 'drop', 'dragend']
	assert bridge.events('mouse')[-1][2] == 'click'
	assert bridge.events('remove_listeners') == [('remove_listeners', 'listeners-1')]
	assert bridge.elements['src'].draggable is None


def test_drag_failure_still_restores_state(bridge, fast_config):
	bridge.add('#card', FakeElement('src'))
	bridge.add('#column', FakeElement('dst'))
	bridge.fail_drag_after = 1
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'card', '#card')
	locate(runner, 'column', '#column')

	instruction = parse_instruction({'type': 'drag', 'id': 'd1', 'sourceName': 'card', 'targetName': 'column', 'duration': 0})
	result = asyncio.run(runner.execute(instruction))

	assert not result.success
	assert len(bridge.events('remove_listeners')) == 1
	assert len(bridge.events('restore_draggable')) == 1
	assert bridge.elements['src'].draggable is None


def test_click_point_with_offset(bridge, fast_config):
	bridge.add('#btn', FakeElement('h1', rect={'left': 10, 'top': 20, 'width': 100, 'height': 50}))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'btn', '#btn')

	result = asyncio.run(runner.execute(ClickInstruction(id='c1', element_name='btn', offset_x=5, offset_y=5)))
	assert (result.data['x'], result.data['y']) == (65, 70)


def test_time_wait_duration(bridge, fast_config):
	runner = InstructionRunner(bridge, config=fast_config)
	result = asyncio.run(runner.execute(WaitInstruction(id='w1', wait_type='time', value=0.2)))
	assert result.success
	assert result.duration_ms >= 200


# ==================== VISIBILITY WAITS ====================

HIDDEN = {'display': 'none', 'visibility': 'visible', 'opacity': '1'}
SHOWN = {'display': 'block', 'visibility': 'visible', 'opacity': '1'}


async def reveal_later(element: FakeElement, delay: float) -> None:
	await asyncio.sleep(delay)
	element.style = dict(SHOWN)


def test_click_waits_for_element_to_become_visible(bridge, fast_config):
	element = bridge.add('#btn', FakeElement('h1', style=dict(HIDDEN)))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'btn', '#btn')

	async def scenario():
		reveal = asyncio.create_task(reveal_later(element, 0.03))
		result = await runner.execute(ClickInstruction(id='c1', element_name='btn', wait_visible=True, timeout=1))
		await reveal
		return result

	result = asyncio.run(scenario())

	assert result.success, result.error
	kinds = [call[0] for call in bridge.calls]
	assert ('scroll', 'h1') in bridge.calls
	assert kinds.index('scroll') < kinds.index('mouse')
	assert [call[2] for call in bridge.events('mouse')] == ['mousedown', 'mouseup', 'click']


def test_click_on_visible_element_does_not_scroll(bridge, fast_config):
	bridge.add('#btn', FakeElement('h1'))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'btn', '#btn')

	result = asyncio.run(runner.execute(ClickInstruction(id='c1', element_name='btn', wait_visible=True)))
	assert result.success
	assert bridge.events('scroll') == []


def test_click_on_element_that_stays_hidden_times_out(bridge, fast_config):
	bridge.add('#btn', FakeElement('h1', style=dict(HIDDEN)))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'btn', '#btn')

	result = asyncio.run(runner.execute(ClickInstruction(id='c1', element_name='btn', wait_visible=True, timeout=0.05)))

	assert not result.success
	assert 'Timeout waiting for element "btn" to become visible' in result.error
	assert bridge.events('scroll') == [('scroll', 'h1')]
	assert bridge.events('mouse') == []


def test_visible_wait_succeeds_once_element_is_shown(bridge, fast_config):
	element = bridge.add('#card', FakeElement('h1', style=dict(HIDDEN)))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'card', '#card')

	async def scenario():
		reveal = asyncio.create_task(reveal_later(element, 0.03))
		result = await runner.execute(WaitInstruction(id='w1', wait_type='visible', value='card', timeout=1))
		await reveal
		return result

	result = asyncio.run(scenario())
	assert result.success, result.error
	assert result.duration_ms >= 20


def test_visible_wait_times_out_on_hidden_element(bridge, fast_config):
	bridge.add('#card', FakeElement('h1', style=dict(HIDDEN)))
	runner = InstructionRunner(bridge, config=fast_config)
	locate(runner, 'card', '#card')

	result = asyncio.run(runner.execute(WaitInstruction(id='w1', wait_type='visible', value='card', timeout=0.05)))

	assert not result.success
	assert 'to be visible' in result.error
