"""Shared data models for the webrelay automation platform."""

import json
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PrivateAttr, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from webrelay.errors import InstructionValidationError

# Reserved target addressing the coordinator itself
COORDINATOR_TARGET = '-1'

SELECTOR_TYPES = ('css', 'xpath', 'id')


def _wire_config(**overrides: Any) -> ConfigDict:
	config = ConfigDict(
		extra='ignore',
		populate_by_name=True,
		alias_generator=to_camel,
		coerce_numbers_to_str=True,
	)
	config.update(overrides)  # type: ignore[typeddict-item]
	return config


# ==================== ELEMENTS ====================


class ElementHandle(BaseModel):
	"""Opaque reference to a live node inside one document.

	The handle becomes stale silently when the document navigates away.
	"""

	model_config = ConfigDict(frozen=True)

	handle_id: str = Field(description='Identifier of the node in the in-page handle table')


class BoundingBox(BaseModel):
	"""Viewport-relative geometry of an element."""

	model_config = ConfigDict(frozen=True)

	left: float
	top: float
	width: float
	height: float

	@property
	def right(self) -> float:
		return self.left + self.width

	@property
	def bottom(self) -> float:
		return self.top + self.height

	def center(self) -> tuple[float, float]:
		return self.left + self.width / 2, self.top + self.height / 2


class ElementDescriptor(BaseModel):
	"""Named, selector-based definition of a page element."""

	model_config = _wire_config()

	name: str = Field(default='', description='Primary key in the element registry')
	description: str = Field(default='', description='Human-readable description for logs')
	text: str = Field(default='', description='Last value extracted from the element')
	selector: str = Field(default='', description='Selector expression')
	selector_type: str = Field(default='css', description='One of css, xpath, id')
	parent_name: str | None = Field(default=None, description='Name of the parent element')
	children_names: list[str] = Field(default_factory=list, description='Names of child elements')
	related_names: list[str] = Field(default_factory=list, description='Names of related elements')

	_handle: ElementHandle | None = PrivateAttr(default=None)

	@property
	def handle(self) -> ElementHandle | None:
		return self._handle

	def attach_handle(self, handle: ElementHandle) -> None:
		self._handle = handle

	def clear_handle(self) -> None:
		self._handle = None

	def validation_errors(self) -> list[str]:
		errors = []
		if not self.name:
			errors.append('Element name is required')
		if not self.selector:
			errors.append(f'Element "{self.name}": selector is required')
		if self.selector_type not in SELECTOR_TYPES:
			errors.append(f'Element "{self.name}": invalid selectorType "{self.selector_type}"')
		return errors

	def to_object(self) -> dict[str, Any]:
		return self.model_dump(by_alias=True)


# ==================== INSTRUCTIONS ====================


class InstructionBase(BaseModel):
	"""Shared control fields of every instruction. Instructions are immutable."""

	model_config = _wire_config(frozen=True)

	terminal: ClassVar[bool] = False

	type: str
	id: str = Field(default='', description='Caller supplied identifier, uniqueness is not checked')
	delay: float = Field(default=0, description='Seconds to wait before executing')
	retry: int = Field(default=0, description='Attempt budget, at least one attempt is always made')
	timeout: float = Field(default=10, description='Seconds allowed for internal polling loops')
	wait_visible: bool = Field(default=False, description='Wait for the target element to become visible')

	def validation_errors(self) -> list[str]:
		errors = []
		if not self.type or not self.id:
			errors.append('Instruction type and id are required')
		return errors

	def is_valid(self) -> bool:
		return not self.validation_errors()

	def to_payload(self) -> dict[str, Any]:
		return self.model_dump(by_alias=True, mode='json')


_ELEMENT_NAME = AliasChoices('elementName', 'element_name', 'name')


class NavigateInstruction(InstructionBase):
	terminal: ClassVar[bool] = True

	type: Literal['navigate'] = 'navigate'
	url: str = ''

	def validation_errors(self) -> list[str]:
		errors = super().validation_errors()
		if not self.url:
			errors.append('URL is required for navigate instruction')
		return errors


class LocateInstruction(InstructionBase):
	type: Literal['locate_element', 'locate'] = 'locate_element'
	element: ElementDescriptor | None = None

	def validation_errors(self) -> list[str]:
		errors = super().validation_errors()
		if self.element is None:
			errors.append('Element is required for locate instruction')
		else:
			errors.extend(self.element.validation_errors())
		return errors


class ClickInstruction(InstructionBase):
	type: Literal['click'] = 'click'
	element_name: str = Field(default='', validation_alias=_ELEMENT_NAME)
	button: Literal['left', 'middle', 'right'] = 'left'
	click_type: Literal['single', 'double'] = 'single'
	offset_x: float = 0
	offset_y: float = 0

	def validation_errors(self) -> list[str]:
		errors = super().validation_errors()
		if not self.element_name:
			errors.append('Element name is required for click instruction')
		return errors


class DragInstruction(InstructionBase):
	type: Literal['drag'] = 'drag'
	source_name: str = ''
	target_name: str = ''
	duration: float = Field(default=1, description='Seconds spent moving between source and target')

	def validation_errors(self) -> list[str]:
		errors = super().validation_errors()
		if not self.source_name or not self.target_name:
			errors.append('Source and target names are required for drag instruction')
		return errors


class InputTextInstruction(InstructionBase):
	type: Literal['input_text'] = 'input_text'
	element_name: str = Field(default='', validation_alias=_ELEMENT_NAME)
	text: str | None = None
	clear_first: bool = False
	time_delay: float = Field(default=0.1, description='Seconds between characters')

	def validation_errors(self) -> list[str]:
		errors = super().validation_errors()
		if not self.element_name:
			errors.append('Element name is required for input text instruction')
		if self.text is None:
			errors.append('Text is required for input text instruction')
		return errors


class KeyPressInstruction(InstructionBase):
	type: Literal['key_press'] = 'key_press'
	element_name: str = Field(default='', validation_alias=_ELEMENT_NAME)
	key: str = ''
	modifiers: list[str] = Field(default_factory=list)

	def validation_errors(self) -> list[str]:
		errors = super().validation_errors()
		if not self.element_name or not self.key:
			errors.append('Element name and key are required for key press instruction')
		return errors


class WaitType(str, Enum):
	TIME = 'time'
	ELEMENT = 'element'
	VISIBLE = 'visible'
	CONDITION = 'condition'
	NETWORK = 'network'
	FUNCTION = 'function'


class WaitInstruction(InstructionBase):
	type: Literal['wait'] = 'wait'
	wait_type: str = ''
	value: Any = None

	def validation_errors(self) -> list[str]:
		errors = super().validation_errors()
		if not self.wait_type or self.value is None:
			errors.append('Wait type and value are required for wait instruction')
		elif self.wait_type not in {member.value for member in WaitType}:
			errors.append(f'Unknown wait type: {self.wait_type}')
		elif self.wait_type == WaitType.TIME.value and not isinstance(self.value, (int, float)):
			errors.append('Wait value must be a number of seconds for time waits')
		return errors


class GetTextInstruction(InstructionBase):
	type: Literal['get_text'] = 'get_text'
	element_name: str = Field(default='', validation_alias=_ELEMENT_NAME)
	text_type: Literal['innerText', 'textContent', 'value'] = 'innerText'
	include_html: bool = Field(default=False, alias='includeHTML')

	def validation_errors(self) -> list[str]:
		errors = super().validation_errors()
		if not self.element_name:
			errors.append('Element name is required for get text instruction')
		return errors


Instruction = Annotated[
	Union[
		NavigateInstruction,
		LocateInstruction,
		ClickInstruction,
		DragInstruction,
		InputTextInstruction,
		KeyPressInstruction,
		WaitInstruction,
		GetTextInstruction,
	],
	Field(discriminator='type'),
]

_instruction_adapter: TypeAdapter[Any] = TypeAdapter(Instruction)


def parse_instruction(data: Any) -> InstructionBase:
	"""Build one instruction from a dict or a JSON object string.

	Raises:
		InstructionValidationError: If the payload has no known type tag or malformed fields
	"""
	if isinstance(data, InstructionBase):
		return data
	if isinstance(data, (str, bytes)):
		try:
			data = json.loads(data)
		except json.JSONDecodeError as e:
			raise InstructionValidationError(f'Invalid instruction JSON: {e}') from e
	if not isinstance(data, dict):
		raise InstructionValidationError(f'Instruction must be an object, got {type(data).__name__}')
	try:
		return _instruction_adapter.validate_python(data)
	except ValidationError as e:
		raise InstructionValidationError(f'Invalid instruction ({data.get("type")}): {e}') from e


def parse_instructions(data: Any) -> list[InstructionBase]:
	"""Build an ordered instruction list from a list, a single object or a JSON string."""
	if isinstance(data, (str, bytes)):
		try:
			data = json.loads(data)
		except json.JSONDecodeError as e:
			raise InstructionValidationError(f'Invalid instruction JSON: {e}') from e
	if isinstance(data, (dict, InstructionBase)):
		return [parse_instruction(data)]
	if not isinstance(data, list):
		raise InstructionValidationError('Instruction payload must be an object or an array')
	return [parse_instruction(item) for item in data]


class ExecutionResult(BaseModel):
	"""Outcome of one executed instruction. Never mutated after creation."""

	model_config = ConfigDict(frozen=True, populate_by_name=True)

	instruction_id: str = Field(alias='instructionID', description='ID of the executed instruction')
	success: bool = Field(description='Whether the instruction succeeded')
	error: str | None = Field(default=None, description='Error message on failure')
	duration_ms: int = Field(default=0, alias='duration', description='Elapsed time in milliseconds')
	data: Any = Field(default=None, description='Instruction specific payload')


# ==================== DISPATCH ====================


class QueueEntry(BaseModel):
	"""An instruction payload waiting in a target queue."""

	model_config = ConfigDict(extra='forbid', coerce_numbers_to_str=True)

	target: str = Field(description='Target identity owning this entry')
	instruction: Any = Field(description='Raw instruction payload (object, array or JSON string)')
	enqueued_at: int = Field(description='Enqueue time in epoch milliseconds')


class ConnectionRecord(BaseModel):
	"""Liveness bookkeeping of an attached execution context."""

	model_config = ConfigDict(extra='forbid', coerce_numbers_to_str=True)

	target: str
	index: int = Field(default=-1, description='Tab index of the target')
	connected_at: int = Field(description='Earliest observed attach time, epoch ms')
	last_seen_at: int = Field(description='Latest observed activity, epoch ms')
	url: str = Field(default='', description='Document URL at last observation')


class NodeProfile(BaseModel):
	"""Stable identity of this coordinator node."""

	model_config = ConfigDict(extra='ignore')

	node_id: str = ''
	node_name: str = ''
	node_token: str = ''
	node_type: str = ''


class Message(BaseModel):
	"""Action-tagged request exchanged over the messaging channel."""

	model_config = ConfigDict(extra='forbid')

	action: str
	data: Any = None


class Reply(BaseModel):
	"""Response to a :class:`Message`. Failures are encoded, never raised."""

	model_config = ConfigDict(extra='forbid')

	success: bool
	data: Any = None
	error: str | None = None
	message: str = ''

	@classmethod
	def ok(cls, data: Any = None, message: str = '') -> 'Reply':
		return cls(success=True, data=data, message=message)

	@classmethod
	def fail(cls, error: str, message: str = '') -> 'Reply':
		return cls(success=False, error=error, message=message or error)


class ReplyType(str, Enum):
	INSTRUCTION = 'instruction'
	CONNECTIONS = 'connections'
	EXPIRE = 'expire'
	NOTIFY = 'notify'


class ServerReply(BaseModel):
	"""Envelope relayed to the remote task server."""

	model_config = ConfigDict(extra='forbid', populate_by_name=True, coerce_numbers_to_str=True)

	node_id: str
	node_name: str
	node_type: str
	target: str = Field(alias='tabId')
	type: ReplyType
	data: Any = None
	created_at: int
