HELP_TEXT = """These commands are supported:
/help - Display this help message
/start - Start the bot

Any other message is passed to the assistant as a prompt."""

START_TEXT = "Claude YOLO Bot is ready! Send any message to execute Claude commands."

PROCESSING_TEXT = "Processing..."

NO_OUTPUT_TEXT = "Completed. No output received from the assistant."

SPAWN_FAILURE_TEXT = "Error: {error}"
