#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Compose shipping label PDFs from the command line.
"""

# local repo modules
import shipping_label_composer.cli


if __name__ == "__main__":
	shipping_label_composer.cli.main()
