"""Engine core: step loops, tool calling, object generation and streams."""
