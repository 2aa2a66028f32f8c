"""
Constants and configuration for cmdpipe
"""

# ============================================================================
# TEMPLATE LEXING
# ============================================================================
# Characters that split words when they appear outside quotes.
WORD_SEPARATORS = ' \t\n'

INTERPOLATION_MARKER = '$'
SINGLE_QUOTE = "'"
DOUBLE_QUOTE = '"'
ESCAPE = '\\'

# Inside double quotes a backslash only escapes these characters,
# everything else keeps the backslash (POSIX sh behavior).
DOUBLE_QUOTE_ESCAPABLE = {'$', '"', '\\', '\n'}

# Separator used when a sequence is interpolated inside double quotes.
QUOTED_SEQUENCE_JOINER = ' '


# ============================================================================
# EXECUTION
# ============================================================================
# Read size used by stream pumps and by read().
DEFAULT_CHUNK_SIZE = 64 * 1024

# Encoding for str stdin buffers and read_text().
DEFAULT_ENCODING = 'utf-8'

# Seconds to wait for a child after terminate() before escalating to kill().
TERMINATE_GRACE_PERIOD = 5

# Stream names, in fd order.
STREAMS = ('stdin', 'stdout', 'stderr')

# open_process() modes
MODE_READ = 'r'
MODE_WRITE = 'w'
MODE_READ_WRITE = 'r+'
OPEN_MODES = {MODE_READ, MODE_WRITE, MODE_READ_WRITE}
