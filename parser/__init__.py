"""
parser package

Record types and the discovery log parser.
"""
