"""
Task worker process entry point.

A worker runs exactly one recipe and sends exactly one message back:
either a result record or a fault description.
"""

# Standard Library
import dataclasses

# local repo modules
import shipping_label_composer as slc
import shipping_label_composer.config
import shipping_label_composer.recipes


TaskResult = slc.config.TaskResult

MESSAGE_RESULT = "result"
MESSAGE_FAULT = "fault"


#============================================
def worker_fault(error: str) -> TaskResult:
	"""
	Build the failure reported when a worker crashes or is killed.

	Args:
		error: Description of the fault.

	Returns:
		TaskResult with error_kind worker_fault.
	"""
	return slc.config.failure(error, slc.config.ERROR_WORKER_FAULT)


#============================================
def result_from_message(message) -> TaskResult:
	"""
	Decode a message received from a worker.

	Args:
		message: Dict sent by run_worker.

	Returns:
		TaskResult.
	"""
	if not isinstance(message, dict):
		return worker_fault(f"unexpected worker message: {message!r}")
	kind = message.get("kind")
	if kind == MESSAGE_RESULT:
		return TaskResult(**message["result"])
	if kind == MESSAGE_FAULT:
		return worker_fault(message.get("error") or "worker fault")
	return worker_fault(f"unexpected worker message kind: {kind!r}")


#============================================
def run_worker(connection, recipe: str, request) -> None:
	"""
	Run one recipe and report back over the connection.

	Args:
		connection: Write end of a multiprocessing pipe.
		recipe: Recipe name.
		request: Parsed request dataclass.
	"""
	try:
		result = slc.recipes.run_recipe(recipe, request)
	except Exception as error:
		print(f"Worker fault in {recipe}: {type(error).__name__}: {error}")
		connection.send({"kind": MESSAGE_FAULT, "error": f"{type(error).__name__}: {error}"})
	else:
		if not result.success:
			print(f"{recipe} failed: {result.error}")
		connection.send({"kind": MESSAGE_RESULT, "result": dataclasses.asdict(result)})
	finally:
		connection.close()
