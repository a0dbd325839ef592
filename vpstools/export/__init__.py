from vpstools.export.sink import FileSink, MemorySink, export_filename

__all__ = ["FileSink", "MemorySink", "export_filename"]
