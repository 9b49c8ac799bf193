"""
KernelPicker: chooses which kernel spec a notebook should connect to.
"""

import inspect
from typing import Awaitable, Callable, Optional, Union

from cellbook.kernel import KernelSpec
from cellbook.kernel_manager import KernelManager


# Receives the candidate specs, returns the chosen one or None when the user declines.
Chooser = Callable[[list[KernelSpec]], Union[Optional[KernelSpec], Awaitable[Optional[KernelSpec]]]]


class KernelPicker:
    """
    Select a kernel spec.

    - No specs: nothing to pick, returns None
    - One spec: always selected
    - Auto picker enabled: the preferred kernel by name, else the first spec
    - Otherwise the chooser decides; without one the pick is declined
    """

    def __init__(
        self,
        kernel_manager: KernelManager,
        preferred_kernel_name: Optional[str] = None,
        language: Optional[str] = None,
        auto_select: bool = False,
        chooser: Optional[Chooser] = None,
    ):
        self.kernel_manager = kernel_manager
        self.preferred_kernel_name = preferred_kernel_name
        self.language = language
        self.auto_select = auto_select
        self.chooser = chooser

    async def show(self) -> Optional[KernelSpec]:
        if self.language:
            specs = await self.kernel_manager.get_kernel_specs_for_language(self.language)
        else:
            specs = await self.kernel_manager.get_kernel_specs()

        if not specs:
            return None
        if len(specs) == 1:
            return specs[0]

        if self.auto_select:
            if self.preferred_kernel_name:
                preferred = next((s for s in specs if s.name == self.preferred_kernel_name), None)
                if preferred is not None:
                    return preferred
            return specs[0]

        if self.chooser is None:
            return None
        choice = self.chooser(specs)
        if inspect.isawaitable(choice):
            choice = await choice
        return choice
