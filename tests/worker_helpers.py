"""
Worker entry points with faulty behavior for orchestrator tests.
"""

# Standard Library
import os
import time


#============================================
def exit_without_result(connection, recipe, request) -> None:
	connection.close()
	os._exit(3)


#============================================
def result_then_crash(connection, recipe, request) -> None:
	connection.send(
		{
			"kind": "result",
			"result": {"success": True, "path": None, "output_page_count": 1},
		}
	)
	connection.close()
	os._exit(1)


#============================================
def report_fault(connection, recipe, request) -> None:
	connection.send({"kind": "fault", "error": "engine exploded"})
	connection.close()


#============================================
def sleep_forever(connection, recipe, request) -> None:
	time.sleep(120)
