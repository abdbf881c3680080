from .writers import render_png, write_metadata, write_session_info, write_stack, write_table
