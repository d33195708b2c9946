from setuptools import setup, find_packages
import os

CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))

def get_version():
    """Get the package version"""
    # We can not import `libinfo.py` in setup.py directly since __init__.py
    # Will be invoked which introduces dependences
    libinfo_py = os.path.join(CURRENT_DIR, 'python', 'mxsym', 'libinfo.py')
    libinfo = {'__file__': libinfo_py}
    with open(libinfo_py, "rb") as f:
        exec(compile(f.read(), libinfo_py, 'exec'), libinfo, libinfo)
    return libinfo['__VERSION__']

setup(name='mxsym',
    version=get_version(),
    description="Symbolic graph construction, shape inference and "
                "executor binding over a computation-graph engine",
    package_dir={"": "python"},
    packages=find_packages("python"),
    python_requires=">=3.7",
    install_requires=[
        "numpy",
        "yacs",
        "PyYAML",
    ],
    extras_require={
        "test": ["pytest"],
    })
