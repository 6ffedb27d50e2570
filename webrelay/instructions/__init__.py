from webrelay.instructions.input import InputSimulator, click_point
from webrelay.instructions.service import InstructionRunner
from webrelay.instructions.wait import Waiter

__all__ = ['InputSimulator', 'InstructionRunner', 'Waiter', 'click_point']
