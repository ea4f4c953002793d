"""
Error taxonomy for composition tasks.
"""

# local repo modules
import shipping_label_composer as slc
import shipping_label_composer.config


class ComposerError(Exception):
	error_kind = slc.config.ERROR_COMPOSITION


class ValidationError(ComposerError):
	error_kind = slc.config.ERROR_VALIDATION


class SourceError(ComposerError):
	error_kind = slc.config.ERROR_SOURCE

	def __init__(self, role: str, message: str):
		super().__init__(f"{role}: {message}")
		self.role = role


class CompositionError(ComposerError):
	error_kind = slc.config.ERROR_COMPOSITION


class LayoutError(CompositionError):
	def __init__(self, element_id: str):
		super().__init__(f"Missing layout data for element '{element_id}'")
		self.element_id = element_id


class OutputError(ComposerError):
	error_kind = slc.config.ERROR_IO


class RenderError(ComposerError):
	error_kind = slc.config.ERROR_COMPOSITION
