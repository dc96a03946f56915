"""Default values shared across the runtime."""

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_TEMPERATURE = 0.7

DEFAULT_MAX_CONTEXT_TOKENS = 128_000
DEFAULT_INPUT_OUTPUT_RATIO = 4.0

# Sizing heuristic only: roughly four characters per token, one token for the
# role marker and twenty per requested tool call.
CHARS_PER_TOKEN = 4
ROLE_TOKENS = 1
TOOL_CALL_TOKENS = 20

DEFAULT_SUBSCRIBER_QUEUE_SIZE = 1000

DEFAULT_LOOP_MESSAGE = (
    "I notice I'm calling {tool_name} again with the same parameters. "
    "The previous result was: {previous_result}. "
    "I should use this result instead of calling the tool again."
)

SUMMARY_PREVIEW_CHARS = 100
