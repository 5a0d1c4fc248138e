"""
Maestro - OSC engine for driving a digital mixing console from a show console.

Modules:
    primitives: Big-endian OSC primitives (padded strings, blobs, time tags)
    types: Native value <-> OSC type tag model (Argument, Message, Bundle)
    codec: Message and bundle encoding/decoding, packet dispatch
    packet: Sanitized decode into plain Python values
    osc: Duplex UDP session sharing one socket for send and receive
    mixer: Connection owner and X32 helper commands
"""

__version__ = "0.1.0"

# Note: Modules are imported on-demand so python -m maestro.cli and the
# simulator can be run without pulling in the whole stack.
# Use: from maestro import codec, osc, mixer, etc.
