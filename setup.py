#!/usr/bin/env python
"""esp_rom_flasher setup script."""
import os
import re

from setuptools import setup

PROJECT_NAME = 'ESP_ROM_Flasher'
PROJECT_PACKAGE_NAME = 'esp_rom_flasher'
PROJECT_LICENSE = 'MIT'

here = os.path.abspath(os.path.dirname(__file__))

with open(os.path.join(here, 'requirements.txt')) as requirements_txt:
    REQUIRES = requirements_txt.read().splitlines()

with open(os.path.join(here, 'requirements_test.txt')) as requirements_test_txt:
    TEST_REQUIRES = requirements_test_txt.read().splitlines()

with open(os.path.join(here, 'README.md')) as readme:
    LONG_DESCRIPTION = readme.read()

# read the version without importing the package (pyserial may not be installed yet)
with open(os.path.join(here, PROJECT_PACKAGE_NAME, 'const.py')) as const_py:
    VERSION = re.search(r'^__version__ = "([^"]+)"', const_py.read(), re.M).group(1)


setup(
    name=PROJECT_PACKAGE_NAME,
    version=VERSION,
    license=PROJECT_LICENSE,
    description="ESP32 firmware flasher speaking the ROM bootloader protocol",
    include_package_data=True,
    zip_safe=False,
    platforms='any',
    test_suite='tests',
    python_requires='>=3.8,<4.0',
    install_requires=REQUIRES,
    extras_require={'test': TEST_REQUIRES},
    long_description=LONG_DESCRIPTION,
    long_description_content_type='text/markdown',
    keywords=['esp32', 'bootloader', 'flasher', 'serial'],
    entry_points={
        'console_scripts': [
            'esp_rom_flasher = esp_rom_flasher.__main__:main'
        ]
    },
    packages=[PROJECT_PACKAGE_NAME],
)
